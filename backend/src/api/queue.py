"""
Queue progress API endpoint.

Patient-facing read of the doctor's current token and how many tokens are
ahead of the caller's.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth.dependencies import UserContext, get_current_user
from core.database import get_db
from services.queue_progress_service import QueueProgressService

router = APIRouter()


class TokenProgressResponse(BaseModel):
    """Response model for queue progress."""
    doctor_id: int
    clinic_id: int
    date: date
    schedule_id: Optional[int] = None
    current_token: int
    status: str
    patient_token: Optional[int] = None
    tokens_ahead: int
    walk_in_patients: int


@router.get("/{doctor_id}/token-progress", response_model=TokenProgressResponse)
async def get_token_progress(
    doctor_id: int,
    clinic_id: int = Query(...),
    patient_token: Optional[int] = Query(None, ge=1),
    schedule_id: Optional[int] = Query(None),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current token at the desk and the caller's place in today's queue."""
    progress = QueueProgressService.progress(
        db,
        doctor_id=doctor_id,
        clinic_id=clinic_id,
        patient_token=patient_token,
        schedule_id=schedule_id,
    )
    return TokenProgressResponse(
        doctor_id=progress.doctor_id,
        clinic_id=progress.clinic_id,
        date=progress.on_date,
        schedule_id=progress.schedule_id,
        current_token=progress.current_token,
        status=progress.status,
        patient_token=progress.patient_token,
        tokens_ahead=progress.tokens_ahead,
        walk_in_patients=progress.walk_in_patients,
    )
