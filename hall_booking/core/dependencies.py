from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from hall_booking.core.jwt import decode_access_token

security = HTTPBearer()

ROLES = ("user", "staff", "admin")


@dataclass(frozen=True)
class Caller:
    """Identity resolved by the auth collaborator for the current request."""

    user_id: int
    role: str
    branch_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_staff(self) -> bool:
        return self.role in ("staff", "admin")

    def can_manage_branch(self, branch_id: int) -> bool:
        if self.is_admin:
            return True
        return self.role == "staff" and (self.branch_id is None or self.branch_id == branch_id)


def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Caller:
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload or "role" not in payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = payload["role"]
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid role")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    branch_id = payload.get("branch_id")
    return Caller(user_id=user_id, role=role, branch_id=int(branch_id) if branch_id is not None else None)


def require_staff(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_staff:
        raise HTTPException(status_code=403, detail="Staff only")
    return caller


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return caller
