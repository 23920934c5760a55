from __future__ import annotations


class HttpError(Exception):
    def __init__(self, status: int, url: str, message: str = "", body_snippet: str = ""):
        super().__init__(message or f"HTTP {status} for {url}")
        self.status = status
        self.url = url
        self.body_snippet = body_snippet

class UnauthorizedError(HttpError): pass           # 401
class ForbiddenError(HttpError): pass              # 403
class NotFoundError(HttpError): pass               # 404
class ThrottleError(HttpError): pass               # 429
class ServerError(HttpError): pass                 # 5xx
class NetworkError(HttpError): pass                # request/timeout


class FetchError(HttpError):
    """A request kept failing after every allowed attempt."""
    def __init__(self, url: str, attempts: int, last_error: Exception):
        status = getattr(last_error, "status", -1)
        super().__init__(status, url, f"Request to {url} failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def is_client_error(ex: Exception) -> bool:
    status = getattr(ex, "status", -1)
    return isinstance(ex, HttpError) and 400 <= status <= 499
