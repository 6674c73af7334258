"""
Role-based access control for the prescription gateway.

Authentication and profile storage belong to the external identity service;
the gateway only sees the caller's role, passed in the X-Role header by the
fronting auth proxy (or set by hand in development).

  doctor      - issues and records prescriptions, builds tokens
  pharmacist  - verifies and dispenses
  patient     - verifies own prescriptions
  admin       - network diagnostics, operator rebind, account tools

A request without the header is treated as a patient. An unrecognised role
is refused outright.
"""
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException


class Role(str, Enum):
    DOCTOR = "doctor"
    PHARMACIST = "pharmacist"
    PATIENT = "patient"
    ADMIN = "admin"


# operation -> roles allowed to perform it
OPERATION_ROLES: dict[str, tuple[Role, ...]] = {
    "record_prescription":   (Role.DOCTOR,),                                # /prescriptions/record, /issue
    "build_token":           (Role.DOCTOR,),                                # /prescriptions/token
    "verify_prescription":   (Role.DOCTOR, Role.PHARMACIST, Role.PATIENT),  # /prescriptions/verify
    "dispense_prescription": (Role.PHARMACIST,),                            # /prescriptions/dispense
    "verify_transaction":    (Role.PHARMACIST, Role.ADMIN),                 # /transactions/verify
    "rebind_operator":       (Role.ADMIN,),                                 # /network/rebind
    "read_accounts":         (Role.ADMIN,),                                 # /accounts/info
    "generate_keys":         (Role.ADMIN,),                                 # /accounts/keypair
    "read_metrics":          (Role.ADMIN,),                                 # /metrics
}


def has_permission(role: Role, operation: str) -> bool:
    return role in OPERATION_ROLES.get(operation, ())


def _denied(operation: str, role: str, reason: str) -> HTTPException:
    return HTTPException(status_code=403, detail={
        "error": reason,
        "operation": operation,
        "role": role,
        "allowed_roles": [r.value for r in OPERATION_ROLES.get(operation, ())],
    })


def require_permission(operation: str):
    """FastAPI dependency guarding one operation; returns the caller's Role."""
    if operation not in OPERATION_ROLES:
        raise ValueError(f"unknown operation {operation!r}")

    def check_role(x_role: Optional[str] = Header(default=None, alias="X-Role")) -> Role:
        raw = (x_role or Role.PATIENT.value).strip().lower()
        try:
            role = Role(raw)
        except ValueError:
            raise _denied(operation, raw, "unknown_role")
        if not has_permission(role, operation):
            raise _denied(operation, role.value, "access_denied")
        return role

    return check_role
