"""
Patient wallet API endpoints.

Patients read their own wallet; staff read any wallet; clinic admins and
system admins make manual adjustments and activate/deactivate wallets. No
endpoint writes a balance directly: every change goes through the ledger.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    WalletResponse, WalletTransactionListResponse, WalletTransactionResponse,
    transaction_to_response, wallet_to_response
)
from auth.dependencies import (
    UserContext, ensure_patient_access, get_current_user, require_admin_role
)
from core.constants import DEFAULT_TRANSACTION_PAGE_SIZE, MAX_NOTES_LENGTH, MAX_TRANSACTION_PAGE_SIZE
from core.database import get_db
from services.wallet_service import WalletService

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response Models
class WalletCreateRequest(BaseModel):
    initial_balance: Optional[Decimal] = Field(None, ge=0, description="Defaults to the configured opening balance")


class WalletAdjustmentRequest(BaseModel):
    """Request model for a manual wallet adjustment."""
    amount: Decimal = Field(..., gt=0)
    is_credit: bool
    reason: str = Field(..., min_length=1, max_length=MAX_NOTES_LENGTH)


class WalletStatusRequest(BaseModel):
    is_active: bool


class WalletSummaryResponse(BaseModel):
    """Response model for a wallet with recent history and statistics."""
    wallet: WalletResponse
    recent_transactions: List[WalletTransactionResponse]
    total_transactions: int
    total_refunds: Decimal
    total_payments: Decimal


# Endpoints
@router.post("/{patient_id}/wallet", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
async def create_wallet(
    patient_id: int,
    request: Optional[WalletCreateRequest] = None,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Open a patient's wallet. Returns the existing wallet if already open."""
    ensure_patient_access(current_user, patient_id)

    initial_balance = request.initial_balance if request else None
    if initial_balance is not None and not current_user.is_staff():
        # Patients cannot credit themselves an opening balance
        initial_balance = None

    wallet = WalletService.create_wallet(db, patient_id, initial_balance=initial_balance)
    return wallet_to_response(wallet)


@router.get("/{patient_id}/wallet", response_model=WalletSummaryResponse)
async def get_wallet(
    patient_id: int,
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ensure_patient_access(current_user, patient_id)

    summary = WalletService.get_wallet_summary(db, patient_id)
    return WalletSummaryResponse(
        wallet=wallet_to_response(summary.wallet),
        recent_transactions=[transaction_to_response(t) for t in summary.recent_transactions],
        total_transactions=summary.total_transactions,
        total_refunds=summary.total_refunds,
        total_payments=summary.total_payments,
    )


@router.get("/{patient_id}/wallet/transactions", response_model=WalletTransactionListResponse)
async def list_wallet_transactions(
    patient_id: int,
    limit: int = Query(DEFAULT_TRANSACTION_PAGE_SIZE, ge=1, le=MAX_TRANSACTION_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    current_user: UserContext = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Wallet history, newest first."""
    ensure_patient_access(current_user, patient_id)

    transactions = WalletService.list_transactions(db, patient_id, limit=limit, offset=offset)
    return WalletTransactionListResponse(
        transactions=[transaction_to_response(t) for t in transactions],
        limit=limit,
        offset=offset,
    )


@router.post("/{patient_id}/wallet/adjustments", response_model=WalletTransactionResponse)
async def adjust_wallet(
    patient_id: int,
    request: WalletAdjustmentRequest,
    current_user: UserContext = Depends(require_admin_role),
    db: Session = Depends(get_db)
):
    """Manual credit or debit by an administrator."""
    transaction = WalletService.admin_adjustment(
        db,
        patient_id,
        amount=request.amount,
        is_credit=request.is_credit,
        reason=request.reason,
        admin_id=current_user.user_id,
    )
    return transaction_to_response(transaction)


@router.patch("/{patient_id}/wallet/status", response_model=WalletResponse)
async def set_wallet_status(
    patient_id: int,
    request: WalletStatusRequest,
    current_user: UserContext = Depends(require_admin_role),
    db: Session = Depends(get_db)
):
    wallet = WalletService.set_wallet_active(db, patient_id, request.is_active)
    return wallet_to_response(wallet)
