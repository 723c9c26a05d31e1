# pyright: reportMissingTypeStubs=false
"""
Authentication and authorization dependencies for FastAPI.

Provides dependency injection functions for caller authentication,
role-based access control, and clinic / patient isolation enforcement.
Identity records live with the authentication collaborator, so the
context is built from the verified token alone.
"""

import logging
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.config import SYSTEM_ADMIN_EMAILS
from services.jwt_service import jwt_service, TokenPayload

logger = logging.getLogger(__name__)

USER_TYPE_SYSTEM_ADMIN = "system_admin"
USER_TYPE_STAFF = "staff"
USER_TYPE_PATIENT = "patient"


class UserContext:
    """Authenticated caller context extracted from JWT token."""

    def __init__(
        self,
        user_type: str,
        email: str,
        roles: list[str],
        clinic_id: Optional[int],
        name: str,
        user_id: Optional[int] = None,
        patient_id: Optional[int] = None
    ):
        self.user_type = user_type  # "system_admin", "staff" or "patient"
        self.email = email
        self.roles = roles
        self.clinic_id = clinic_id
        self.name = name
        self.user_id = user_id
        self.patient_id = patient_id

    def is_system_admin(self) -> bool:
        """Check if user is a system admin."""
        return self.user_type == USER_TYPE_SYSTEM_ADMIN

    def is_staff(self) -> bool:
        """Clinic staff, or a system admin acting as staff."""
        return self.user_type == USER_TYPE_STAFF or self.is_system_admin()

    def is_patient(self) -> bool:
        return self.user_type == USER_TYPE_PATIENT

    def has_role(self, role: str) -> bool:
        """Check if user has a specific role."""
        return role in self.roles or self.is_system_admin()

    def can_access_clinic(self, clinic_id: int) -> bool:
        return self.is_system_admin() or (self.user_type == USER_TYPE_STAFF and self.clinic_id == clinic_id)

    def __repr__(self) -> str:
        return f"UserContext(user_type='{self.user_type}', email='{self.email}', roles={self.roles})"


# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[TokenPayload]:
    """Extract and validate JWT token payload."""
    if not credentials:
        return None

    return jwt_service.verify_token(credentials.credentials)


def get_current_user(
    payload: Optional[TokenPayload] = Depends(get_token_payload)
) -> UserContext:
    """Get authenticated caller context from JWT token."""
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials not provided"
        )

    if payload.user_type == USER_TYPE_SYSTEM_ADMIN:
        # Verify email is in system admin whitelist
        if payload.email not in SYSTEM_ADMIN_EMAILS:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied"
            )
        return UserContext(
            user_type=USER_TYPE_SYSTEM_ADMIN,
            email=payload.email,
            roles=[],
            clinic_id=None,
            name=payload.name,
            user_id=payload.user_id,
        )

    if payload.user_type == USER_TYPE_STAFF:
        if payload.clinic_id is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Clinic access denied"
            )
        return UserContext(
            user_type=USER_TYPE_STAFF,
            email=payload.email,
            roles=payload.roles,
            clinic_id=payload.clinic_id,
            name=payload.name,
            user_id=payload.user_id,
        )

    if payload.user_type == USER_TYPE_PATIENT:
        if payload.patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Patient token missing patient id"
            )
        return UserContext(
            user_type=USER_TYPE_PATIENT,
            email=payload.email,
            roles=[],
            clinic_id=None,
            name=payload.name,
            user_id=payload.user_id,
            patient_id=payload.patient_id,
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid user type"
    )


# Role-based authorization dependencies
def require_system_admin(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require system admin access."""
    if not user.is_system_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System admin access required"
        )
    return user


def require_staff(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require clinic staff (or system admin)."""
    if not user.is_staff():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Staff access required"
        )
    return user


def require_admin_role(user: UserContext = Depends(get_current_user)) -> UserContext:
    """Require clinic admin role (or system admin)."""
    if not user.is_staff() or not user.has_role("admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


def ensure_clinic_access(user: UserContext, clinic_id: int) -> None:
    """Raise 403 unless the caller is staff of the clinic (or a system admin)."""
    if not user.can_access_clinic(clinic_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Clinic access denied"
        )


def ensure_patient_access(user: UserContext, patient_id: int) -> None:
    """Patients may only act on themselves; staff and admins on anyone."""
    if user.is_patient() and user.patient_id != patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient access denied"
        )
