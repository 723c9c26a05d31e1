"""
Utility modules for the clinic queue application.

This package contains shared helpers used across the application,
currently the clinic-time datetime utilities.
"""

from utils.datetime_utils import clinic_now, clinic_today

__all__ = ['clinic_now', 'clinic_today']
