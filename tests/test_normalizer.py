import base64

import pytest

from intuneinv.core.errors import NormalizationError, PerItemError
from intuneinv.core.models import ItemType, TargetKind
from intuneinv.core.normalizer import Normalizer, decode_content
from intuneinv.http.errors import NotFoundError, ServerError
from helpers import FakeGraph


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def test_script_content_is_decoded_and_unknown_fields_dropped():
    raw = {
        "id": "s1",
        "displayName": "Set Timezone",
        "description": "sets tz",
        "fileName": "Set-Tz.ps1",
        "runAsAccount": "system",
        "scriptContent": b64("Set-TimeZone -Id 'UTC'"),
        "roleScopeTagIds": ["0"],
        "@odata.context": "https://graph.microsoft.com/beta/$metadata#x",
    }
    rec = Normalizer().normalize(raw, ItemType.SCRIPT, run_id="run-1")

    assert rec.id == "s1"
    assert rec.display_name == "Set Timezone"
    assert rec.content == "Set-TimeZone -Id 'UTC'"
    assert rec.has_content is True
    assert rec.run_id == "run-1"
    assert rec.metadata == {
        "description": "sets tz", "file_name": "Set-Tz.ps1", "run_as_account": "system",
    }


def test_application_has_no_content():
    raw = {
        "id": "a1",
        "displayName": "Company Portal",
        "@odata.type": "#microsoft.graph.winGetApp",
        "publisher": "Microsoft",
        "largeIcon": {"type": "image/png", "value": "..."},
    }
    rec = Normalizer().normalize(raw, ItemType.APPLICATION)
    assert rec.has_content is False
    assert rec.content is None
    assert rec.metadata == {"app_type": "#microsoft.graph.winGetApp", "publisher": "Microsoft"}


def test_empty_script_content_means_no_content():
    rec = Normalizer().normalize({"id": "s2", "displayName": "x", "scriptContent": ""}, ItemType.SCRIPT)
    assert rec.has_content is False


def test_remediation_keeps_both_scripts():
    raw = {
        "id": "r1",
        "displayName": "Disk cleanup",
        "publisher": "IT",
        "detectionScriptContent": b64("exit 1"),
        "remediationScriptContent": b64("Remove-Item $env:TEMP\\* -Recurse"),
    }
    rec = Normalizer().normalize(raw, ItemType.REMEDIATION)
    assert rec.content == "exit 1"
    assert rec.metadata["remediation_script"].startswith("Remove-Item")
    assert rec.has_content is True


def test_byte_order_mark_is_stripped():
    encoded = base64.b64encode("\ufeffWrite-Output 1".encode("utf-8")).decode()
    assert decode_content(encoded) == "Write-Output 1"


def test_missing_id_is_a_per_item_error():
    with pytest.raises(PerItemError):
        Normalizer().normalize({"displayName": "orphan"}, ItemType.APPLICATION)


def test_bad_base64_is_a_normalization_error():
    with pytest.raises(NormalizationError) as exc_info:
        Normalizer().normalize({"id": "s3", "displayName": "x", "scriptContent": "not*base64"}, ItemType.SCRIPT)
    assert exc_info.value.item_id == "s3"


def _assignment(aid, odata_type, group_id=None, intent="apply"):
    target = {"@odata.type": odata_type}
    if group_id:
        target["groupId"] = group_id
    return {"id": aid, "intent": intent, "target": target}


def test_assignment_targets_resolved_with_memoized_group_lookup():
    graph = FakeGraph(groups={"g1": "Pilot Devices"})
    norm = Normalizer(graph)
    raw = [
        _assignment("x1", "#microsoft.graph.groupAssignmentTarget", "g1"),
        _assignment("x2", "#microsoft.graph.exclusionGroupAssignmentTarget", "g1"),
        _assignment("x3", "#microsoft.graph.allLicensedUsersAssignmentTarget"),
        _assignment("x4", "#microsoft.graph.allDevicesAssignmentTarget"),
    ]

    out = norm.resolve_assignment_targets(raw, object_id="s1", object_type=ItemType.SCRIPT, run_id="r")

    assert [a.target_kind for a in out] == [
        TargetKind.GROUP, TargetKind.EXCLUSION_GROUP, TargetKind.ALL_USERS, TargetKind.ALL_DEVICES,
    ]
    assert out[0].resolved_group_name == "Pilot Devices"
    assert out[1].target_display == "Exclude: Pilot Devices"
    assert out[2].target_group_id is None and out[2].target_display == "All Users"
    assert graph.group_calls == ["g1"]
    assert all(a.object_id == "s1" and a.run_id == "r" for a in out)


def test_group_lookup_failures_use_sentinels_and_do_not_raise():
    graph = FakeGraph(groups={
        "gone": NotFoundError(404, "groups/gone", "Not Found"),
        "flaky": ServerError(500, "groups/flaky", "Server error"),
    })
    out = Normalizer(graph).resolve_assignment_targets(
        [
            _assignment("a", "#microsoft.graph.groupAssignmentTarget", "gone"),
            _assignment("b", "#microsoft.graph.groupAssignmentTarget", "flaky"),
        ],
        object_id="app", object_type=ItemType.APPLICATION,
    )
    assert out[0].resolved_group_name == "Unknown Group (gone)"
    assert out[1].resolved_group_name == "Error Resolving (flaky)"


def test_unrecognized_discriminator():
    graph = FakeGraph(groups={"g9": "Kiosk"})
    out = Normalizer(graph).resolve_assignment_targets(
        [
            _assignment("a", "#microsoft.graph.configurationManagerCollectionAssignmentTarget"),
            _assignment("b", "#microsoft.graph.somethingNewAssignmentTarget", "g9"),
        ],
        object_id="r1", object_type=ItemType.REMEDIATION,
    )
    assert out[0].target_kind == TargetKind.UNKNOWN
    assert out[0].resolved_group_name == "Unknown Target"
    assert out[1].target_kind == TargetKind.UNKNOWN
    assert out[1].target_group_id is None
    assert out[1].resolved_group_name == "Kiosk"


def test_group_cache_scoped_to_batch():
    graph = FakeGraph(groups={"g1": "Pilot"})
    norm = Normalizer(graph)
    raw = [_assignment("x", "#microsoft.graph.groupAssignmentTarget", "g1")]
    norm.resolve_assignment_targets(raw, object_id="a", object_type=ItemType.APPLICATION)
    norm.resolve_assignment_targets(raw, object_id="b", object_type=ItemType.APPLICATION)
    assert graph.group_calls == ["g1"]

    norm.begin_batch()
    norm.resolve_assignment_targets(raw, object_id="c", object_type=ItemType.APPLICATION)
    assert graph.group_calls == ["g1", "g1"]


def test_utf16_script_with_bom_is_decoded():
    encoded = base64.b64encode("Get-Process".encode("utf-16")).decode("ascii")
    rec = Normalizer().normalize({"id": "s4", "displayName": "x", "scriptContent": encoded}, ItemType.SCRIPT)
    assert rec.content == "Get-Process"
    assert rec.has_content


def test_undecodable_bytes_are_replaced_not_fatal():
    encoded = base64.b64encode(b"Write-Host \x80 ok").decode("ascii")
    assert decode_content(encoded, item_id="s5") == "Write-Host \ufffd ok"


def test_id_less_assignments_to_same_group_get_distinct_ids():
    target = {"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": "g1"}
    raw = [{"target": dict(target), "intent": "required"}, {"target": dict(target), "intent": "available"}]
    out = Normalizer().resolve_assignment_targets(raw, object_id="a1", object_type=ItemType.APPLICATION)
    assert len({a.id for a in out}) == 2
    assert all(a.target_kind == TargetKind.GROUP for a in out)
