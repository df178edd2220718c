"""
Bimester identifiers, period windows and the open/closed lifecycle.
"""
import json
from datetime import datetime

import pytest

from extensions import db
from services.exceptions import (
    ClassroomNotFoundError,
    FuturePeriodError,
    InvalidPeriodError,
    PeriodAlreadyClosedError,
    PeriodClosedError,
    PeriodNotClosedError,
)
from services.periods import (
    CLOSED,
    FUTURE,
    OPEN,
    PAST,
    Period,
    ensure_not_future,
    period_lifecycle,
    period_state,
    resolve_period,
    resolve_period_window,
)

from conftest import CREATED_AT

NOW = datetime(2025, 11, 20, 12, 0)
CLOSE_TIMES = {
    1: datetime(2025, 5, 9, 18, 0),
    2: datetime(2025, 7, 18, 18, 0),
    3: datetime(2025, 9, 26, 18, 0),
    4: datetime(2025, 12, 19, 18, 0),
}


class TestPeriod:

    @pytest.mark.parametrize('text', ['2025-B2', '2025-b2', '2025-2', ' 2025-B2 '])
    def test_parse_accepts_canonical_and_short_forms(self, text):
        assert Period.parse(text) == Period(2025, 2)
        assert str(Period.parse(text)) == '2025-B2'

    @pytest.mark.parametrize('text', ['2025-B5', '2025-B0', 'B2', '2025', '', None, 'CURRENT', '25-B1'])
    def test_parse_rejects_invalid(self, text):
        with pytest.raises(InvalidPeriodError):
            Period.parse(text)

    def test_next_wraps_year_after_fourth_bimester(self):
        assert Period(2025, 3).next() == Period(2025, 4)
        assert Period(2025, 4).next() == Period(2026, 1)

    def test_previous_wraps_to_last_bimester_of_previous_year(self):
        assert Period(2025, 2).previous() == Period(2025, 1)
        assert Period(2025, 1).previous() == Period(2024, 4)

    def test_ordering_is_chronological(self):
        assert Period(2024, 4) < Period(2025, 1) < Period(2025, 2)

    def test_label(self):
        assert Period(2025, 3).label == 'Bimestre 3'


class TestPeriodWindow:

    def test_without_history_window_is_creation_to_now(self, factory):
        classroom = factory.classroom(current_bimester='2025-B3')

        for ordinal in (1, 2, 3):
            window = resolve_period_window(classroom, Period(2025, ordinal), now=NOW)
            assert window.start == CREATED_AT
            assert window.end == NOW

    def test_windows_are_contiguous_when_closed_in_order(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        for ordinal in (1, 2, 3, 4):
            period_lifecycle.close(classroom.id, f'2025-B{ordinal}', now=CLOSE_TIMES[ordinal])

        windows = [resolve_period_window(classroom, Period(2025, n), now=NOW) for n in (1, 2, 3, 4)]

        assert windows[0].start == CREATED_AT
        for earlier, later in zip(windows, windows[1:]):
            assert earlier.end == later.start
        assert [w.end for w in windows] == [CLOSE_TIMES[n] for n in (1, 2, 3, 4)]

        next_year = resolve_period_window(classroom, Period(2026, 1), now=datetime(2026, 3, 1))
        assert next_year.start == CLOSE_TIMES[4]

    def test_open_period_after_closed_one_runs_until_now(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])

        window = resolve_period_window(classroom, Period(2025, 2), now=NOW)

        assert window.start == CLOSE_TIMES[1]
        assert window.end == NOW
        assert window.contains(CLOSE_TIMES[1])
        assert not window.contains(NOW)

    def test_late_closing_extends_the_window(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        late = datetime(2025, 6, 30, 9, 0)
        period_lifecycle.close(classroom.id, '2025-B1', now=late)

        assert resolve_period_window(classroom, Period(2025, 1), now=NOW).end == late

    def test_malformed_history_degrades_to_creation_window(self, factory):
        classroom = factory.classroom(current_bimester='2025-B2', closed_bimesters='{not json')

        window = resolve_period_window(classroom, Period(2025, 2), now=NOW)

        assert window.start == CREATED_AT
        assert window.end == NOW

    def test_double_encoded_history_is_read(self, factory):
        history = [{'period': '2025-B1', 'closedAt': '2025-05-09T18:00:00Z', 'closedBy': 'prof'}]
        classroom = factory.classroom(current_bimester='2025-B2',
                                      closed_bimesters=json.dumps(json.dumps(history)))

        window = resolve_period_window(classroom, Period(2025, 2), now=NOW)

        assert window.start == CLOSE_TIMES[1]


class TestPeriodLifecycle:

    def test_close_current_advances_current(self, factory):
        classroom = factory.classroom(current_bimester='2025-B2')

        result = period_lifecycle.close(classroom.id, '2025-B2', closed_by=7, now=CLOSE_TIMES[2])

        assert result == {'closed_period': '2025-B2', 'new_current_bimester': '2025-B3'}
        assert classroom.current_bimester == '2025-B3'
        entry = classroom.get_closed_bimesters()[0]
        assert entry.period == '2025-B2'
        assert entry.closed_by == '7'
        assert entry.closed_at == CLOSE_TIMES[2]

    def test_close_fourth_bimester_wraps_to_next_year(self, factory):
        classroom = factory.classroom(current_bimester='2025-B4')

        result = period_lifecycle.close(classroom.id, '2025-B4', now=CLOSE_TIMES[4])

        assert result['new_current_bimester'] == '2026-B1'

    def test_close_past_period_keeps_current(self, factory):
        classroom = factory.classroom(current_bimester='2025-B3')

        result = period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])

        assert result['new_current_bimester'] == '2025-B3'

    def test_close_already_closed_is_rejected(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])

        with pytest.raises(PeriodAlreadyClosedError):
            period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[2])

    def test_close_future_is_rejected(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')

        with pytest.raises(FuturePeriodError):
            period_lifecycle.close(classroom.id, '2025-B3', now=CLOSE_TIMES[1])
        assert classroom.get_closed_bimesters() == []

    def test_reopen_removes_entry_and_keeps_current(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])

        result = period_lifecycle.reopen(classroom.id, '2025-B1')

        assert result == {'reopened_period': '2025-B1'}
        assert classroom.get_closed_bimesters() == []
        assert classroom.current_bimester == '2025-B2'

    def test_reopen_not_closed_is_rejected(self, factory):
        classroom = factory.classroom(current_bimester='2025-B2')

        with pytest.raises(PeriodNotClosedError):
            period_lifecycle.reopen(classroom.id, '2025-B1')

    def test_set_current_rejects_closed_period(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])

        with pytest.raises(PeriodClosedError):
            period_lifecycle.set_current(classroom.id, '2025-B1')

    def test_set_current_normalizes_period(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')

        assert period_lifecycle.set_current(classroom.id, '2025-3') == {'current_bimester': '2025-B3'}
        assert classroom.current_bimester == '2025-B3'

    def test_unknown_classroom(self, app):
        with pytest.raises(ClassroomNotFoundError):
            period_lifecycle.get_status(999)

    def test_status_lists_selected_year(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', closed_by='prof', now=CLOSE_TIMES[1])

        status = period_lifecycle.get_status(classroom.id)

        assert status['current_bimester'] == '2025-B2'
        assert status['selected_year'] == 2025
        assert status['available_years'] == [2025]
        assert status['closed_bimesters'] == [
            {'period': '2025-B1', 'closed_at': CLOSE_TIMES[1].isoformat(), 'closed_by': 'prof'}
        ]
        states = {b['period']: b['state'] for b in status['all_bimesters']}
        assert states == {'2025-B1': CLOSED, '2025-B2': OPEN, '2025-B3': FUTURE, '2025-B4': FUTURE}
        assert [b['label'] for b in status['all_bimesters']][0] == 'Bimestre 1'

    def test_status_for_other_year(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')

        status = period_lifecycle.get_status(classroom.id, year=2026)

        assert status['selected_year'] == 2026
        assert [b['period'] for b in status['all_bimesters']] == [
            '2026-B1', '2026-B2', '2026-B3', '2026-B4'
        ]
        assert not any(b['is_current'] for b in status['all_bimesters'])


class TestFutureGuard:

    def test_future_period_is_rejected(self, factory):
        classroom = factory.classroom(current_bimester='2025-B2')

        ensure_not_future(classroom, Period(2025, 2))
        ensure_not_future(classroom, Period(2024, 4))
        with pytest.raises(FuturePeriodError):
            ensure_not_future(classroom, Period(2025, 3))
        with pytest.raises(FuturePeriodError):
            ensure_not_future(classroom, Period(2026, 1))

    def test_current_alias_resolves_to_stored_current(self, factory):
        classroom = factory.classroom(current_bimester='2025-B3')

        assert resolve_period(classroom, 'CURRENT') == Period(2025, 3)
        assert resolve_period(classroom, 'current') == Period(2025, 3)
        assert resolve_period(classroom, None) == Period(2025, 3)

    def test_missing_current_defaults_to_first_bimester_of_year(self, factory):
        classroom = factory.classroom(current_bimester=None)

        assert resolve_period(classroom, 'CURRENT', now=datetime(2027, 8, 1)) == Period(2027, 1)

    def test_reopened_period_is_past_not_future(self, factory):
        classroom = factory.classroom(current_bimester='2025-B1')
        period_lifecycle.close(classroom.id, '2025-B1', now=CLOSE_TIMES[1])
        period_lifecycle.reopen(classroom.id, '2025-B1')
        db.session.refresh(classroom)

        assert period_state(classroom, Period(2025, 1)) == PAST
        ensure_not_future(classroom, Period(2025, 1))
