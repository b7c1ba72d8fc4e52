"""Ranked matching of feed entries against stored booking events.

Each strategy scores a (feed entry, stored booking) pair with a confidence
in [0, 1], or returns None when it does not apply. The matcher ranks every
scored pair and accepts pairs greedily, so an entry and a booking are each
used at most once.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from processor.models import BookingEvent, FeedEntry

logger = logging.getLogger(__name__)


def _as_date(value: str) -> date:
    return date.fromisoformat(value[:10])


class MatchStrategy:
    """Base class for match strategies."""

    name = 'base'
    confidence = 0.0

    def score(self, entry: FeedEntry, booking: BookingEvent) -> Optional[float]:
        raise NotImplementedError


class ExternalIdStrategy(MatchStrategy):
    """Same external event id."""

    name = 'external_id'
    confidence = 1.0

    def score(self, entry, booking):
        return self.confidence if entry.uid == booking.event_id else None


class ExactDatesStrategy(MatchStrategy):
    """Same check-in and check-out dates under a reissued id."""

    name = 'exact_dates'
    confidence = 0.9

    def score(self, entry, booking):
        if (entry.checkin_date == _as_date(booking.checkin_date) and
                entry.checkout_date == _as_date(booking.checkout_date)):
            return self.confidence
        return None


class DateOverlapStrategy(MatchStrategy):
    """Stays that overlap by at least one night."""

    name = 'date_overlap'
    confidence = 0.5

    def score(self, entry, booking):
        if stays_overlap(entry.checkin_date, entry.checkout_date,
                         _as_date(booking.checkin_date), _as_date(booking.checkout_date)):
            return self.confidence
        return None


def stays_overlap(checkin_a: date, checkout_a: date, checkin_b: date, checkout_b: date) -> bool:
    """True when two stays share a night; same-day turnover is not an overlap."""
    return checkin_a < checkout_b and checkout_a > checkin_b


DEFAULT_STRATEGIES: Tuple[MatchStrategy, ...] = (
    ExternalIdStrategy(),
    ExactDatesStrategy(),
    DateOverlapStrategy(),
)


@dataclass
class Match:
    """Accepted pairing of a feed entry and a stored booking."""
    entry: FeedEntry
    booking: BookingEvent
    strategy: str
    confidence: float


@dataclass
class MatchResult:
    matches: List[Match] = field(default_factory=list)
    unmatched_entries: List[FeedEntry] = field(default_factory=list)
    unmatched_bookings: List[BookingEvent] = field(default_factory=list)


class RankedMatcher:
    """Select the highest-confidence unique pairs between entries and bookings."""

    def __init__(self, strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES):
        self.strategies = list(strategies)

    def _best_score(self, entry: FeedEntry, booking: BookingEvent) -> Optional[Tuple[float, str]]:
        best = None
        for strategy in self.strategies:
            score = strategy.score(entry, booking)
            if score is not None and (best is None or score > best[0]):
                best = (score, strategy.name)
        return best

    def match(self, entries: Sequence[FeedEntry], bookings: Sequence[BookingEvent]) -> MatchResult:
        """
        Pair feed entries with stored bookings.

        Candidates are ordered by confidence (descending), then by distance
        between check-out dates, distance between check-in dates, feed order
        and booking id, which makes the outcome deterministic.

        Args:
            entries: Parsed feed entries for one listing
            bookings: Active stored bookings for the same listing

        Returns:
            MatchResult with accepted matches and leftovers on both sides
        """
        candidates = []
        for entry_index, entry in enumerate(entries):
            for booking in bookings:
                scored = self._best_score(entry, booking)
                if scored is None:
                    continue
                confidence, strategy = scored
                checkout_gap = abs((entry.checkout_date - _as_date(booking.checkout_date)).days)
                checkin_gap = abs((entry.checkin_date - _as_date(booking.checkin_date)).days)
                candidates.append((
                    -confidence, checkout_gap, checkin_gap, entry_index,
                    booking.booking_id, strategy, confidence, entry, booking
                ))

        candidates.sort(key=lambda c: c[:5])

        claimed_entries = set()
        claimed_bookings = set()
        result = MatchResult()

        for i, candidate in enumerate(candidates):
            (_, checkout_gap, checkin_gap, entry_index, booking_id,
             strategy, confidence, entry, booking) = candidate
            if entry_index in claimed_entries or booking_id in claimed_bookings:
                continue

            if strategy != ExternalIdStrategy.name:
                self._warn_if_ambiguous(candidates[i + 1:], candidate,
                                        claimed_entries, claimed_bookings)

            claimed_entries.add(entry_index)
            claimed_bookings.add(booking_id)
            result.matches.append(Match(entry, booking, strategy, confidence))

        result.unmatched_entries = [
            e for idx, e in enumerate(entries) if idx not in claimed_entries
        ]
        result.unmatched_bookings = [
            b for b in bookings if b.booking_id not in claimed_bookings
        ]
        return result

    @staticmethod
    def _warn_if_ambiguous(rest, accepted, claimed_entries, claimed_bookings) -> None:
        rank = accepted[:3]
        for other in rest:
            if other[:3] != rank:
                break
            if other[3] in claimed_entries or other[4] in claimed_bookings:
                continue
            if other[3] == accepted[3] or other[4] == accepted[4]:
                logger.warning(
                    f"Ambiguous {accepted[5]} match for entry {accepted[7].uid}: "
                    f"booking {accepted[4]} chosen over an equally ranked candidate"
                )
                return
