# phase_engine/utils/time_machine.py
"""
Virtual clock for the phase engine.

All timestamps are naive UTC datetimes, matching how SQLite and most
DateTime columns round-trip values. Tests move the clock with setTime()
instead of patching datetime.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class TimeMachine:
    """Real or virtual "now" used by services, models and schedulers."""

    def __init__(self):
        self._virtualTime: Optional[datetime] = None
        self.isTestMode = False

    @property
    def now(self) -> datetime:
        """Current time (naive UTC)."""
        if self.isTestMode and self._virtualTime is not None:
            return self._virtualTime
        return datetime.now(timezone.utc).replace(tzinfo=None)

    @property
    def currentMonth(self) -> str:
        """Current month key in YYYY-MM format."""
        return self.now.strftime('%Y-%m')

    def monthBounds(self, moment: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """
        Get start (inclusive) and end (exclusive) of the month containing moment.

        Args:
            moment: Point in time, defaults to now

        Returns:
            Tuple of (month start, next month start)
        """
        moment = moment or self.now
        start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        end = (start + timedelta(days=32)).replace(day=1)
        return start, end

    def setTime(self, virtualTime: datetime) -> None:
        """Switch to test mode and freeze the clock at virtualTime."""
        if virtualTime.tzinfo is not None:
            virtualTime = virtualTime.astimezone(timezone.utc).replace(tzinfo=None)
        self._virtualTime = virtualTime
        self.isTestMode = True
        logger.info(f"Time machine set to {virtualTime.isoformat()}")

    def advanceTime(self, **delta) -> None:
        """Move the virtual clock forward, e.g. advanceTime(days=31)."""
        self.setTime(self.now + timedelta(**delta))

    def resetToRealTime(self) -> None:
        """Leave test mode."""
        self._virtualTime = None
        self.isTestMode = False
        logger.info("Time machine reset to real time")


timeMachine = TimeMachine()
