from __future__ import annotations


class InventoryError(Exception):
    """Base for storage and per-item sync failures."""


class NotFoundError(InventoryError):
    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} '{item_id}' not found in inventory")
        self.kind = kind
        self.item_id = item_id


class StorageWriteError(InventoryError):
    """A collection file could not be rewritten; previous state was restored."""
    def __init__(self, message: str, files=()):
        super().__init__(message)
        self.files = list(files)


class PerItemError(InventoryError):
    """Failure confined to one source item; the run records it and moves on."""
    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class NormalizationError(PerItemError):
    pass
