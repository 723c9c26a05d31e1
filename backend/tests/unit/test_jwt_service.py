"""
Tests for JWT service functionality.
"""

import jwt
from datetime import datetime, timedelta, timezone

from core.config import JWT_SECRET_KEY
from services.jwt_service import jwt_service, TokenPayload


class TestJWTService:
    """Test JWT token creation and validation."""

    def test_create_access_token(self):
        payload = TokenPayload(
            sub="staff-1",
            email="staff@example.com",
            user_type="staff",
            roles=["attender"],
            clinic_id=1,
            user_id=1,
            name="Desk Staff"
        )

        token = jwt_service.create_access_token(payload)
        assert isinstance(token, str)
        assert len(token) > 0

    def test_verify_token_valid(self):
        """Test verifying a valid JWT token."""
        payload = TokenPayload(
            sub="patient-100",
            email="patient@example.com",
            user_type="patient",
            patient_id=42,
            user_id=100,
            name="Patient"
        )

        token = jwt_service.create_access_token(payload)
        verified_payload = jwt_service.verify_token(token)

        assert verified_payload is not None
        assert verified_payload.sub == payload.sub
        assert verified_payload.user_type == "patient"
        assert verified_payload.patient_id == 42
        assert verified_payload.clinic_id is None
        assert verified_payload.roles == []
        assert verified_payload.exp is not None
        assert verified_payload.iat is not None

    def test_verify_token_expired(self):
        payload = TokenPayload(
            sub="staff-1",
            email="staff@example.com",
            user_type="staff",
            roles=["admin"],
            clinic_id=1,
            name="Admin"
        )

        token = jwt_service.create_access_token(payload, expires_delta=timedelta(seconds=-10))
        assert jwt_service.verify_token(token) is None

    def test_verify_token_wrong_secret(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {
                "sub": "staff-1",
                "email": "staff@example.com",
                "user_type": "staff",
                "name": "Staff",
                "iat": now,
                "exp": now + timedelta(hours=1),
            },
            JWT_SECRET_KEY + "-other",
            algorithm="HS256",
        )

        assert jwt_service.verify_token(token) is None

    def test_verify_token_garbage(self):
        assert jwt_service.verify_token("not-a-jwt") is None
