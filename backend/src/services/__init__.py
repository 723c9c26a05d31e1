"""
Services package for the token and refund core.

This package contains service classes that encapsulate the business logic
behind the schedule, appointment, wallet and queue endpoints.
"""

from .schedule_service import ScheduleService
from .token_allocation_service import TokenAllocationService
from .appointment_status_service import AppointmentStatusService
from .wallet_service import WalletService
from .refund_service import RefundService
from .queue_progress_service import QueueProgressService
from .report_service import ReportService
from .event_service import EventService, event_dispatcher

__all__ = [
    "ScheduleService",
    "TokenAllocationService",
    "AppointmentStatusService",
    "WalletService",
    "RefundService",
    "QueueProgressService",
    "ReportService",
    "EventService",
    "event_dispatcher",
]
