# common/utils/clock.py
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from src.common.config import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clinic_today() -> date:
    """Current calendar day in the clinic's local timezone; scopes queue dates."""
    return datetime.now(ZoneInfo(settings.CLINIC_TIMEZONE)).date()
