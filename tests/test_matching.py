"""Unit tests for the ranked matcher."""
import logging
from datetime import date, datetime

from processor.matching import (
    DateOverlapStrategy, ExactDatesStrategy, ExternalIdStrategy, RankedMatcher, stays_overlap
)
from processor.models import BookingEvent, FeedEntry


def entry(uid, checkin, checkout):
    return FeedEntry(
        uid=uid,
        title='Reserved',
        start=datetime.fromisoformat(checkin),
        end=datetime.fromisoformat(checkout)
    )


def booking(booking_id, event_id, checkin, checkout):
    return BookingEvent(
        booking_id=booking_id,
        version=1,
        event_id=event_id,
        listing_id='listing-1',
        checkin_date=checkin,
        checkout_date=checkout,
        checkout_type='open'
    )


class TestStrategies:
    """Test cases for individual match strategies."""

    def test_external_id(self):
        strategy = ExternalIdStrategy()
        assert strategy.score(entry('a', '2024-03-10', '2024-03-15'),
                              booking('b1', 'a', '2024-04-01', '2024-04-05')) == 1.0
        assert strategy.score(entry('a', '2024-03-10', '2024-03-15'),
                              booking('b1', 'x', '2024-03-10', '2024-03-15')) is None

    def test_exact_dates(self):
        strategy = ExactDatesStrategy()
        assert strategy.score(entry('a', '2024-03-10', '2024-03-15'),
                              booking('b1', 'x', '2024-03-10', '2024-03-15')) == 0.9
        assert strategy.score(entry('a', '2024-03-10', '2024-03-16'),
                              booking('b1', 'x', '2024-03-10', '2024-03-15')) is None

    def test_date_overlap(self):
        strategy = DateOverlapStrategy()
        assert strategy.score(entry('a', '2024-03-12', '2024-03-18'),
                              booking('b1', 'x', '2024-03-10', '2024-03-15')) == 0.5
        assert strategy.score(entry('a', '2024-03-15', '2024-03-18'),
                              booking('b1', 'x', '2024-03-10', '2024-03-15')) is None

    def test_same_day_turnover_is_not_an_overlap(self):
        assert not stays_overlap(date(2024, 3, 10), date(2024, 3, 15),
                                 date(2024, 3, 15), date(2024, 3, 20))
        assert stays_overlap(date(2024, 3, 10), date(2024, 3, 16),
                             date(2024, 3, 15), date(2024, 3, 20))


class TestRankedMatcher:
    """Test cases for RankedMatcher."""

    def test_external_id_wins_over_dates(self):
        """Test that an id match is preferred to an exact-dates match."""
        entries = [entry('uid-1', '2024-03-10', '2024-03-15')]
        bookings = [
            booking('b-dates', 'other', '2024-03-10', '2024-03-15'),
            booking('b-id', 'uid-1', '2024-03-11', '2024-03-16'),
        ]

        result = RankedMatcher().match(entries, bookings)

        assert len(result.matches) == 1
        assert result.matches[0].booking.booking_id == 'b-id'
        assert result.matches[0].strategy == 'external_id'
        assert [b.booking_id for b in result.unmatched_bookings] == ['b-dates']

    def test_reissued_id_matched_by_dates(self):
        entries = [entry('new-uid', '2024-03-10', '2024-03-15')]
        bookings = [booking('b1', 'old-uid', '2024-03-10', '2024-03-15')]

        result = RankedMatcher().match(entries, bookings)

        assert result.matches[0].strategy == 'exact_dates'
        assert result.matches[0].confidence == 0.9

    def test_overlap_prefers_closest_checkout(self):
        """Test the closest-checkout tie-break among overlap candidates."""
        entries = [entry('new', '2024-03-10', '2024-03-16')]
        bookings = [
            booking('far', 'x', '2024-03-11', '2024-03-20'),
            booking('near', 'y', '2024-03-12', '2024-03-15'),
        ]

        result = RankedMatcher().match(entries, bookings)

        assert result.matches[0].booking.booking_id == 'near'

    def test_each_side_used_once(self):
        """Test that two entries overlapping one booking produce one match."""
        entries = [
            entry('e1', '2024-03-10', '2024-03-15'),
            entry('e2', '2024-03-12', '2024-03-14'),
        ]
        bookings = [booking('b1', 'x', '2024-03-10', '2024-03-14')]

        result = RankedMatcher().match(entries, bookings)

        assert len(result.matches) == 1
        assert len(result.unmatched_entries) == 1
        assert result.unmatched_bookings == []

    def test_two_by_two_overlap_is_deterministic(self, caplog):
        """Test that fully ambiguous overlaps resolve the same way every time."""
        entries = [
            entry('e1', '2024-03-10', '2024-03-15'),
            entry('e2', '2024-03-10', '2024-03-15'),
        ]
        bookings = [
            booking('b2', 'x', '2024-03-11', '2024-03-14'),
            booking('b1', 'y', '2024-03-11', '2024-03-14'),
        ]

        with caplog.at_level(logging.WARNING):
            first = RankedMatcher().match(entries, bookings)
            second = RankedMatcher().match(list(entries), list(reversed(bookings)))

        pairs = [(m.entry.uid, m.booking.booking_id) for m in first.matches]
        assert pairs == [('e1', 'b1'), ('e2', 'b2')]
        assert [(m.entry.uid, m.booking.booking_id) for m in second.matches] == pairs
        assert 'Ambiguous' in caplog.text

    def test_no_candidates(self):
        entries = [entry('e1', '2024-03-10', '2024-03-15')]
        bookings = [booking('b1', 'x', '2024-05-01', '2024-05-05')]

        result = RankedMatcher().match(entries, bookings)

        assert result.matches == []
        assert len(result.unmatched_entries) == 1
        assert len(result.unmatched_bookings) == 1
