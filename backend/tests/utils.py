"""
Test utilities for clinic queue tests.
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from core.config import JWT_SECRET_KEY


def create_jwt_token(
    user_type: str = "staff",
    clinic_id: Optional[int] = 1,
    roles: Optional[List[str]] = None,
    user_id: int = 1,
    patient_id: Optional[int] = None,
    email: str = "staff@example.com",
    expires_in: timedelta = timedelta(hours=1)
) -> str:
    """Create a JWT token as issued by the authentication collaborator."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": f"{user_type}-{user_id}",
        "email": email,
        "user_type": user_type,
        "roles": roles if roles is not None else ["attender"],
        "clinic_id": clinic_id,
        "patient_id": patient_id,
        "user_id": user_id,
        "name": f"Test {user_type}",
        "exp": now + expires_in,
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")


def staff_headers(clinic_id: int = 1, roles: Optional[List[str]] = None, user_id: int = 1) -> dict:
    token = create_jwt_token(user_type="staff", clinic_id=clinic_id, roles=roles, user_id=user_id)
    return {"Authorization": f"Bearer {token}"}


def patient_headers(patient_id: int, user_id: int = 100) -> dict:
    token = create_jwt_token(
        user_type="patient",
        clinic_id=None,
        roles=[],
        user_id=user_id,
        patient_id=patient_id,
        email=f"patient{patient_id}@example.com",
    )
    return {"Authorization": f"Bearer {token}"}
