import uuid
from types import SimpleNamespace

import pytest

from epitrack.services.access import (
    APPROVE_CHECKLISTS,
    CREATE_CHECKLIST_EXECUTION,
    GENERATE_REPORTS,
    MANAGE_CHECKLISTS,
    MANAGE_EPI_TYPES,
    READ_ALL_CHECKLISTS,
    READ_TEAM_CHECKLISTS,
    ROLE_PERMISSIONS,
    can_access_department_data,
    can_access_user_data,
    has_permission,
    owner_scope,
    permissions_for,
)


def principal(role, department="Produção", supervised=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        role=role,
        department=department,
        supervised_employee_ids=[str(x) for x in (supervised or [])],
    )


@pytest.mark.parametrize(
    "role,permission,expected",
    [
        ("employee", CREATE_CHECKLIST_EXECUTION, True),
        ("employee", READ_TEAM_CHECKLISTS, False),
        ("employee", APPROVE_CHECKLISTS, False),
        ("supervisor", APPROVE_CHECKLISTS, True),
        ("supervisor", MANAGE_CHECKLISTS, False),
        ("safety_technician", MANAGE_EPI_TYPES, True),
        ("safety_technician", READ_ALL_CHECKLISTS, True),
        ("safety_technician", APPROVE_CHECKLISTS, False),
        ("admin", GENERATE_REPORTS, True),
        ("admin", "anything_at_all", True),
        ("unknown", CREATE_CHECKLIST_EXECUTION, False),
        (None, CREATE_CHECKLIST_EXECUTION, False),
    ],
)
def test_capability_matrix(role, permission, expected):
    assert has_permission(role, permission) is expected


def test_matrix_is_read_only():
    with pytest.raises(TypeError):
        ROLE_PERMISSIONS["employee"] = frozenset({"all"})


def test_permissions_for_lists_sorted_names():
    assert permissions_for("employee") == ["create_checklist_execution", "read_own_checklists"]
    assert permissions_for("admin") == ["all"]
    assert permissions_for("nobody") == []


def test_employee_sees_only_own_data():
    me = principal("employee")
    assert can_access_user_data(me, me.id)
    assert not can_access_user_data(me, uuid.uuid4())


def test_supervisor_sees_supervised_employees_only():
    team_member = uuid.uuid4()
    sup = principal("supervisor", supervised=[team_member])
    assert can_access_user_data(sup, team_member)
    assert can_access_user_data(sup, str(team_member))
    assert can_access_user_data(sup, sup.id)
    assert not can_access_user_data(sup, uuid.uuid4())


@pytest.mark.parametrize("role", ["admin", "safety_technician"])
def test_privileged_roles_see_everyone(role):
    assert can_access_user_data(principal(role), uuid.uuid4())
    assert can_access_department_data(principal(role, department="Outro"), "Produção")


def test_missing_target_is_denied():
    assert not can_access_user_data(principal("admin"), None)
    assert not can_access_user_data(None, uuid.uuid4())


def test_department_scoping():
    sup = principal("supervisor", department="Produção")
    assert can_access_department_data(sup, "Produção")
    assert not can_access_department_data(sup, "Manutenção")
    assert not can_access_department_data(sup, None)


def test_owner_scope():
    team_member = uuid.uuid4()
    sup = principal("supervisor", supervised=[team_member])
    emp = principal("employee")

    assert owner_scope(principal("admin")) is None
    assert owner_scope(principal("safety_technician")) is None
    assert owner_scope(emp) == [str(emp.id)]
    assert set(owner_scope(sup)) == {str(sup.id), str(team_member)}
