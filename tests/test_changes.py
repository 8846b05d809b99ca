import pytest

from hvpilot.core.changes import APPLIED, FAILED, PLANNED, SKIPPED, ChangeSet


def test_dry_run_records_plan_without_calling():
    calls = []
    changes = ChangeSet(dry_run=True)

    result = changes.apply("app01", "创建虚机", calls.append, "x", detail="hv01")

    assert result is None
    assert calls == []
    assert changes.records[0].status == PLANNED
    assert changes.changed


def test_apply_returns_result_and_marks_applied():
    changes = ChangeSet()

    assert changes.apply("nic1", "RDMA", lambda a, b=0: a + b, 1, b=2) == 3
    assert changes.records[0].status == APPLIED
    assert changes.summary() == {PLANNED: 0, APPLIED: 1, SKIPPED: 0, FAILED: 0}


def test_failure_is_recorded_and_reraised():
    changes = ChangeSet()

    def boom():
        raise RuntimeError("access denied")

    with pytest.raises(RuntimeError):
        changes.apply("nic1", "巨帧", boom)

    assert changes.has_failures
    assert changes.to_list()[0]["error"] == "access denied"


def test_skip_and_extend():
    first = ChangeSet()
    first.skip("SETswitch", "创建 SET 交换机", "已存在")
    second = ChangeSet()
    second.apply("nic1", "VLAN", lambda: None)

    first.extend(second)

    assert not ChangeSet().changed
    assert [r["status"] for r in first.to_list()] == [SKIPPED, APPLIED]
