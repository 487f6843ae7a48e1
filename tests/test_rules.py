from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from epitrack.errors import InvariantViolation
from epitrack.models.models import Anomaly, ChecklistExecution
from epitrack.schemas.anomalies import AnomalyActionCreate, AnomalyResolve
from epitrack.services.anomalies import (
    add_action,
    close_anomaly,
    enforce_severity_rules,
    is_overdue,
    overdue_days,
    resolve_anomaly,
    total_cost,
)
from epitrack.services.catalog import is_expiring_soon, validate_new_epi_type
from epitrack.services.checklists import items_changed, next_execution_date, validate_dates
from epitrack.services.executions import (
    compliance_percentage,
    duration_minutes,
    has_nonconformity,
    status_counts,
    validate_completion,
)
from epitrack.services.reports import aggregate_compliance
from epitrack.services.time_rules import days_until, now_utc


def _results(ok=0, nc=0, na=0, pending=0):
    statuses = ["ok"] * ok + ["not_conform"] * nc + ["not_applicable"] * na + ["pending"] * pending
    return [{"checklist_item_id": f"i{n}", "status": s} for n, s in enumerate(statuses)]


def test_compliance_percentage_counts_not_applicable_in_denominator():
    assert compliance_percentage(_results(ok=3, nc=1, na=1)) == 60


def test_compliance_percentage_ignores_pending():
    assert compliance_percentage(_results(ok=1, pending=3)) == 100
    assert compliance_percentage(_results(pending=2)) == 0
    assert compliance_percentage([]) == 0


def test_status_counts_and_nonconformity():
    results = _results(ok=2, nc=1, pending=1)
    assert status_counts(results) == {"ok": 2, "not_conform": 1, "not_applicable": 0, "pending": 1}
    assert has_nonconformity(results)
    assert not has_nonconformity(_results(ok=2))


def test_duration_minutes():
    start = now_utc()
    e = ChecklistExecution(started_at=start, completed_at=start + timedelta(minutes=14, seconds=40))
    assert duration_minutes(e) == 15
    assert duration_minutes(ChecklistExecution(started_at=start)) is None


def test_completion_requires_signature_and_checked_items():
    checklist = SimpleNamespace(items=[{"id": "i0", "is_required": True}, {"id": "i1", "is_required": True}])
    result = validate_completion(checklist, _results(ok=1, pending=1), "")
    fields = [e.field for e in result.errors]
    assert "signature_hash" in fields
    assert "results" in fields

    missing = validate_completion(checklist, _results(ok=1), "abc")
    assert not missing.ok

    assert validate_completion(checklist, _results(ok=1, na=1), "abc").ok


def test_aggregate_compliance_over_executions():
    executions = [
        ChecklistExecution(results=_results(ok=2, nc=1)),
        ChecklistExecution(results=_results(ok=1, na=1, pending=2)),
    ]
    agg = aggregate_compliance(executions)
    assert agg["total_items"] == 5
    assert agg["conform_items"] == 3
    assert agg["compliance_rate"] == 60


def test_expiry_must_follow_effective_date():
    now = now_utc()
    assert not validate_dates(now, now).ok
    assert not validate_dates(now, now - timedelta(days=1)).ok
    assert validate_dates(now, now + timedelta(days=1)).ok
    assert validate_dates(now, None).ok
    with pytest.raises(InvariantViolation):
        validate_dates(now, now).raise_for_errors()


def test_items_changed_ignores_item_ids():
    old = [{"id": "a", "epi_type_id": "x", "criteria": [], "is_required": True, "order": 0, "notes": None}]
    same = [dict(old[0], id="b")]
    changed = [dict(old[0], is_required=False)]
    assert not items_changed(old, same)
    assert items_changed(old, changed)


def test_next_execution_date_uses_frequency():
    last = datetime(2024, 3, 1, 8, 0)
    checklist = SimpleNamespace(frequency_days=7)
    assert next_execution_date(checklist, last).day == 8
    assert abs((next_execution_date(checklist, None) - now_utc()).total_seconds()) < 5


def test_past_ca_date_is_rejected():
    assert not validate_new_epi_type(now_utc() - timedelta(days=1)).ok
    assert validate_new_epi_type(now_utc() + timedelta(days=1)).ok


def test_expiring_soon_window():
    soon = SimpleNamespace(ca_expiry_date=now_utc() + timedelta(days=10))
    later = SimpleNamespace(ca_expiry_date=now_utc() + timedelta(days=90))
    past = SimpleNamespace(ca_expiry_date=now_utc() - timedelta(days=1))
    assert is_expiring_soon(soon)
    assert not is_expiring_soon(later)
    assert not is_expiring_soon(past)


def test_days_until_rounds_partial_days_up():
    now = now_utc()
    assert days_until(now + timedelta(hours=1), now) == 1
    assert days_until(now + timedelta(days=2), now) == 2


def test_critical_severity_escalates_priority_and_impact():
    a = enforce_severity_rules(Anomaly(severity="critical", priority="low", safety_impact="none"))
    assert a.priority == "urgent"
    assert a.safety_impact == "high"

    kept = enforce_severity_rules(Anomaly(severity="critical", priority="high", safety_impact="high"))
    assert kept.priority == "high"

    untouched = enforce_severity_rules(Anomaly(severity="low", priority="low", safety_impact="none"))
    assert untouched.priority == "low"


def test_overdue_and_cost():
    now = now_utc()
    a = Anomaly(
        status="open",
        due_date=now - timedelta(days=2, hours=1),
        actions=[{"cost": 10.5}, {"cost": 4.5}],
        resolution={"cost": 20},
    )
    assert is_overdue(a, now)
    assert overdue_days(a, now) == 3
    assert total_cost(a) == 35.0

    a.status = "resolved"
    assert not is_overdue(a, now)
    assert overdue_days(a, now) == 0


def _anomaly(db, reporter, status="open"):
    a = Anomaly(
        reported_by=reporter.id,
        severity="medium",
        priority="medium",
        safety_impact="low",
        status=status,
        actions=[],
    )
    return a


def test_first_action_moves_open_to_in_progress(db, employee):
    a = _anomaly(db, employee)
    add_action(db, a, AnomalyActionCreate(action="Substituição", description="Troca do item", cost=12), employee)
    assert a.status == "in_progress"
    assert len(a.actions) == 1
    assert a.actions[0]["taken_by"] == str(employee.id)


def test_closed_anomaly_rejects_actions_and_resolution(db, employee, supervisor):
    a = _anomaly(db, employee, status="closed")
    with pytest.raises(InvariantViolation):
        add_action(db, a, AnomalyActionCreate(action="x", description="y"), employee)
    with pytest.raises(InvariantViolation):
        resolve_anomaly(db, a, AnomalyResolve(resolution_method="repair", notes="ok"), employee)
    assert close_anomaly(db, a, supervisor).status == "closed"
