"""
Who may do what on a facility.

Routes check capabilities, not raw roles. The owner holds every capability
on their facility; staff hold the ones their flags grant.
"""
from typing import Optional, Set

from schemas import Facility, Staff, User

CAP_FACILITY_MANAGE = "facility.manage"    # hours, auto mode, staff, history
CAP_FACILITY_STATUS = "facility.status"    # open/close toggle, status note
CAP_CATALOG_EDIT = "catalog.edit"
CAP_STAFF_ON_DUTY = "staff.on_duty"
CAP_REGISTER_MANAGE = "register.manage"

ALL_CAPABILITIES = {
    CAP_FACILITY_MANAGE,
    CAP_FACILITY_STATUS,
    CAP_CATALOG_EDIT,
    CAP_STAFF_ON_DUTY,
    CAP_REGISTER_MANAGE,
}


class PermissionDenied(Exception):
    pass


def staff_capabilities(staff: Staff) -> Set[str]:
    caps = {CAP_FACILITY_STATUS}
    if staff.can_add_items:
        caps.add(CAP_CATALOG_EDIT)
    if staff.can_see_staff_on_duty:
        caps.add(CAP_STAFF_ON_DUTY)
    if staff.can_manage_register:
        caps.add(CAP_REGISTER_MANAGE)
    return caps


def find_staff(facility: Facility, actor_id: str) -> Optional[Staff]:
    return next((s for s in facility.staff if s.id == actor_id), None)


def capabilities_for(actor_id: str, facility: Facility) -> Set[str]:
    if actor_id == facility.owner_id:
        return set(ALL_CAPABILITIES)
    staff = find_staff(facility, actor_id)
    if staff is None:
        return set()
    return staff_capabilities(staff)


def has_capability(actor_id: str, facility: Facility, cap: str) -> bool:
    return cap in capabilities_for(actor_id, facility)


def require(actor_id: str, facility: Facility, cap: str) -> None:
    if not has_capability(actor_id, facility, cap):
        raise PermissionDenied(f"{cap} not permitted on facility {facility.code}")


def require_admin(user: Optional[User]) -> None:
    if user is None or not user.is_admin:
        raise PermissionDenied("Admin access required")
