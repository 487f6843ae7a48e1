"""
Access control evaluator.

Two independent checks: the role capability matrix and row level ownership
scoping. Every function here is pure; the principal is anything exposing
``id``, ``role``, ``department`` and ``supervised_employee_ids``.
"""
from types import MappingProxyType
from typing import List, Optional

ADMIN = "admin"
SAFETY_TECHNICIAN = "safety_technician"
SUPERVISOR = "supervisor"
EMPLOYEE = "employee"

ROLES = (EMPLOYEE, SUPERVISOR, SAFETY_TECHNICIAN, ADMIN)

WILDCARD = "all"

READ_OWN_CHECKLISTS = "read_own_checklists"
READ_TEAM_CHECKLISTS = "read_team_checklists"
READ_ALL_CHECKLISTS = "read_all_checklists"
APPROVE_CHECKLISTS = "approve_checklists"
CREATE_CHECKLIST_EXECUTION = "create_checklist_execution"
MANAGE_EPI_TYPES = "manage_epi_types"
MANAGE_CHECKLISTS = "manage_checklists"
GENERATE_REPORTS = "generate_reports"

ROLE_PERMISSIONS = MappingProxyType({
    EMPLOYEE: frozenset({READ_OWN_CHECKLISTS, CREATE_CHECKLIST_EXECUTION}),
    SUPERVISOR: frozenset({
        READ_OWN_CHECKLISTS,
        READ_TEAM_CHECKLISTS,
        APPROVE_CHECKLISTS,
        CREATE_CHECKLIST_EXECUTION,
    }),
    SAFETY_TECHNICIAN: frozenset({
        READ_ALL_CHECKLISTS,
        MANAGE_EPI_TYPES,
        MANAGE_CHECKLISTS,
        GENERATE_REPORTS,
        CREATE_CHECKLIST_EXECUTION,
    }),
    ADMIN: frozenset({WILDCARD}),
})

# Roles that bypass ownership and department scoping
PRIVILEGED_ROLES = frozenset({ADMIN, SAFETY_TECHNICIAN})
# Roles allowed on the supervisor-tier report endpoints and anomaly close
SUPERVISOR_TIER = frozenset({SUPERVISOR, SAFETY_TECHNICIAN, ADMIN})


def has_permission(role: Optional[str], permission: str) -> bool:
    granted = ROLE_PERMISSIONS.get(role or "", frozenset())
    return WILDCARD in granted or permission in granted


def permissions_for(role: Optional[str]) -> List[str]:
    """Sorted permission names for display (``me`` endpoint)."""
    return sorted(ROLE_PERMISSIONS.get(role or "", frozenset()))


def is_privileged(principal) -> bool:
    return getattr(principal, "role", None) in PRIVILEGED_ROLES


def _supervised(principal) -> set:
    return {str(x) for x in (getattr(principal, "supervised_employee_ids", None) or [])}


def can_access_user_data(principal, target_user_id) -> bool:
    if principal is None or target_user_id is None:
        return False
    role = getattr(principal, "role", None)
    if role in PRIVILEGED_ROLES:
        return True
    target = str(target_user_id)
    if str(principal.id) == target:
        return True
    if role == SUPERVISOR and target in _supervised(principal):
        return True
    return False


def can_access_department_data(principal, department: Optional[str]) -> bool:
    if principal is None:
        return False
    if getattr(principal, "role", None) in PRIVILEGED_ROLES:
        return True
    return department is not None and principal.department == department


def owner_scope(principal) -> Optional[List[str]]:
    """
    Owner ids a principal may see in executions and anomaly listings.

    None means unrestricted. Supervisors get their supervised set plus
    themselves, the same owners ``can_access_user_data`` allows.
    """
    role = getattr(principal, "role", None)
    if role in PRIVILEGED_ROLES:
        return None
    ids = [str(principal.id)]
    if role == SUPERVISOR:
        ids.extend(sorted(_supervised(principal) - {str(principal.id)}))
    return ids
