"""
Bimester periods

- Period: "2025-B2" style identifier (year + ordinal 1..4)
- resolve_period_window(): turns a period into the [start, end) window of
  activity that counts toward it, using the classroom's closing history
- PeriodLifecycle: current / closed / future state per classroom and the
  set-current, close and reopen transitions

Windows are bounded by real closing events: the end of a period is the
moment it was closed (or now while it is still open) and its start is the
moment the previous period was closed (or the classroom creation date).
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from config import Config
from extensions import db
from models import Classroom, ClosedPeriod, utcnow
from services.exceptions import (
    ClassroomNotFoundError,
    FuturePeriodError,
    InvalidPeriodError,
    PeriodAlreadyClosedError,
    PeriodClosedError,
    PeriodNotClosedError,
)

logger = logging.getLogger(__name__)

BIMESTERS_PER_YEAR = 4
CURRENT_ALIAS = 'CURRENT'

# "2025-B2" (canonical) or "2025-2"
_PERIOD_RE = re.compile(r'^(\d{4})-B?([1-9]\d*)$', re.IGNORECASE)

# Period states relative to a classroom
OPEN = 'OPEN'
CLOSED = 'CLOSED'
FUTURE = 'FUTURE'
PAST = 'PAST'  # before the current period and not closed (e.g. reopened)


@dataclass(frozen=True, order=True)
class Period:
    year: int
    ordinal: int

    @classmethod
    def parse(cls, value) -> 'Period':
        if isinstance(value, Period):
            return value
        match = _PERIOD_RE.match(str(value).strip()) if value is not None else None
        if not match:
            raise InvalidPeriodError(value)
        year, ordinal = int(match.group(1)), int(match.group(2))
        if not 1 <= ordinal <= BIMESTERS_PER_YEAR:
            raise InvalidPeriodError(value)
        return cls(year, ordinal)

    def __str__(self):
        return f"{self.year}-B{self.ordinal}"

    @property
    def label(self) -> str:
        return f"Bimestre {self.ordinal}"

    def next(self) -> 'Period':
        if self.ordinal == BIMESTERS_PER_YEAR:
            return Period(self.year + 1, 1)
        return Period(self.year, self.ordinal + 1)

    def previous(self) -> 'Period':
        if self.ordinal == 1:
            return Period(self.year - 1, BIMESTERS_PER_YEAR)
        return Period(self.year, self.ordinal - 1)


@dataclass(frozen=True)
class DateRange:
    """Half-open interval [start, end)"""
    start: datetime
    end: datetime

    def contains(self, timestamp: Optional[datetime]) -> bool:
        return timestamp is not None and self.start <= timestamp < self.end

    def to_dict(self):
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}


# ============================================================================
# CLASSROOM PERIOD STATE
# ============================================================================

def load_classroom(classroom_id) -> Classroom:
    classroom = db.session.get(Classroom, classroom_id)
    if classroom is None:
        raise ClassroomNotFoundError(classroom_id)
    return classroom


def current_period(classroom: Classroom, now: Optional[datetime] = None) -> Period:
    """Stored current period, or the default when none (or garbage) is stored"""
    if classroom.current_bimester:
        try:
            return Period.parse(classroom.current_bimester)
        except InvalidPeriodError:
            logger.warning("Classroom %s has invalid current bimester %r; using default",
                           classroom.id, classroom.current_bimester)
    return Period.parse(Config.default_current_bimester(now))


def resolve_period(classroom: Classroom, value, now: Optional[datetime] = None) -> Period:
    """Parse a period identifier; "CURRENT" (or None) means the classroom's current period"""
    if value is None or str(value).strip().upper() == CURRENT_ALIAS:
        return current_period(classroom, now)
    return Period.parse(value)


def closed_periods(classroom: Classroom) -> Dict[Period, ClosedPeriod]:
    """
    Closing history keyed by period, built in close-timestamp order so a
    period closed more than once maps to its latest closing.
    """
    result = {}
    for entry in sorted(classroom.get_closed_bimesters(), key=lambda e: e.closed_at):
        try:
            result[Period.parse(entry.period)] = entry
        except InvalidPeriodError:
            logger.warning("Ignoring closed bimester with invalid period %r (classroom %s)",
                           entry.period, classroom.id)
    return result


def period_state(classroom: Classroom, period: Period, now: Optional[datetime] = None) -> str:
    if period in closed_periods(classroom):
        return CLOSED
    current = current_period(classroom, now)
    if period == current:
        return OPEN
    if period > current:
        return FUTURE
    return PAST


def ensure_not_future(classroom: Classroom, period: Period, now: Optional[datetime] = None):
    """Reject any period strictly after the classroom's current period"""
    current = current_period(classroom, now)
    if period > current:
        raise FuturePeriodError(str(period), str(current))


def resolve_period_window(classroom: Classroom, period: Period, now: Optional[datetime] = None) -> DateRange:
    """
    Window of activity that counts toward ``period``.

    end:   closing time of ``period`` if closed, else ``now``
    start: closing time of the previous period if closed, else classroom creation
    """
    now = now or utcnow()
    history = closed_periods(classroom)

    closed_entry = history.get(period)
    end = closed_entry.closed_at if closed_entry else now

    previous_entry = history.get(period.previous())
    start = previous_entry.closed_at if previous_entry else (classroom.created_at or now)

    return DateRange(start=start, end=end)


# ============================================================================
# LIFECYCLE MANAGER
# ============================================================================

class PeriodLifecycle:
    """
    Bimester lifecycle per classroom. The only writer of
    Classroom.current_bimester and Classroom.closed_bimesters.
    """

    def get_status(self, classroom_id, year: Optional[int] = None, now: Optional[datetime] = None):
        """
        Returns:
            dict: {
                'current_bimester': '2025-B2',
                'closed_bimesters': [{'period', 'closed_at', 'closed_by'}, ...],
                'selected_year': 2025,
                'available_years': [2024, 2025],
                'all_bimesters': [{'period', 'label', 'state', 'is_current', 'is_closed', 'closed_at'}, ...]
            }
        """
        classroom = load_classroom(classroom_id)
        current = current_period(classroom, now)
        history = closed_periods(classroom)
        selected_year = int(year) if year else current.year

        years = {current.year}
        if classroom.created_at:
            years.add(classroom.created_at.year)
        years.update(p.year for p in history)

        all_bimesters = []
        for ordinal in range(1, BIMESTERS_PER_YEAR + 1):
            period = Period(selected_year, ordinal)
            entry = history.get(period)
            all_bimesters.append({
                'period': str(period),
                'label': period.label,
                'state': period_state(classroom, period, now),
                'is_current': period == current,
                'is_closed': entry is not None,
                'closed_at': entry.closed_at.isoformat() if entry else None,
            })

        return {
            'current_bimester': str(current),
            'closed_bimesters': [
                {
                    'period': str(period),
                    'closed_at': entry.closed_at.isoformat(),
                    'closed_by': entry.closed_by,
                }
                for period, entry in sorted(history.items())
            ],
            'selected_year': selected_year,
            'available_years': sorted(years),
            'all_bimesters': all_bimesters,
        }

    def set_current(self, classroom_id, period, now: Optional[datetime] = None):
        classroom = load_classroom(classroom_id)
        target = resolve_period(classroom, period, now)

        if target in closed_periods(classroom):
            raise PeriodClosedError(str(target))

        previous = classroom.current_bimester
        classroom.current_bimester = str(target)
        db.session.commit()

        logger.info("Classroom %s current bimester %s -> %s", classroom.id, previous, target)
        return {'current_bimester': str(target)}

    def close(self, classroom_id, period, closed_by=None, now: Optional[datetime] = None):
        """
        Close a period. Closing the current period advances current to the
        next one (B4 wraps to B1 of the next year).
        """
        classroom = load_classroom(classroom_id)
        target = resolve_period(classroom, period, now)
        current = current_period(classroom, now)

        if target in closed_periods(classroom):
            raise PeriodAlreadyClosedError(str(target))
        if target > current:
            raise FuturePeriodError(str(target), str(current))

        history = classroom.get_closed_bimesters()
        history.append(ClosedPeriod(
            period=str(target),
            closed_at=now or utcnow(),
            closed_by=str(closed_by) if closed_by is not None else None,
        ))
        classroom.set_closed_bimesters(history)

        new_current = target.next() if target == current else current
        classroom.current_bimester = str(new_current)
        db.session.commit()

        logger.info("Classroom %s closed bimester %s (by %s); current is %s",
                    classroom.id, target, closed_by, new_current)
        return {'closed_period': str(target), 'new_current_bimester': str(new_current)}

    def reopen(self, classroom_id, period, now: Optional[datetime] = None):
        """Remove a period from the closing history. Current is left untouched."""
        classroom = load_classroom(classroom_id)
        target = resolve_period(classroom, period, now)

        history = classroom.get_closed_bimesters()
        remaining = [e for e in history if not _is_entry_for(e, target)]
        if len(remaining) == len(history):
            raise PeriodNotClosedError(str(target))

        classroom.set_closed_bimesters(remaining)
        db.session.commit()

        logger.info("Classroom %s reopened bimester %s", classroom.id, target)
        return {'reopened_period': str(target)}


def _is_entry_for(entry: ClosedPeriod, period: Period) -> bool:
    try:
        return Period.parse(entry.period) == period
    except InvalidPeriodError:
        return False


period_lifecycle = PeriodLifecycle()
