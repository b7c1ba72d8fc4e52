"""Fetcher and parser for external iCal booking feeds."""
import logging
import re
import time
from datetime import date, datetime
from datetime import time as dt_time
from typing import Iterator, Optional

import requests
from icalendar import Event

from processor.errors import FetchError, ParseError
from processor.models import FeedEntry

logger = logging.getLogger(__name__)

VEVENT_PATTERN = re.compile(r'BEGIN:VEVENT\r?\n(.*?)END:VEVENT', re.DOTALL)
CALNAME_PATTERN = re.compile(r'^X-WR-CALNAME:(.+?)\r?$', re.MULTILINE)

DEFAULT_SUMMARY = 'Reserved'


def parse_feed(ical_text: str, feed_id: Optional[str] = None) -> Iterator[FeedEntry]:
    """
    Parse iCal text into a lazy sequence of feed entries.

    The document check happens immediately; entries are produced as the
    returned iterator is consumed.

    Args:
        ical_text: Raw iCal document
        feed_id: Identifier of the feed the text came from

    Returns:
        Iterator of FeedEntry objects

    Raises:
        ParseError: If the text is not an iCal calendar
    """
    if 'BEGIN:VCALENDAR' not in ical_text:
        raise ParseError('Feed content is not an iCal calendar')

    return _iter_entries(ical_text, feed_id)


def _iter_entries(ical_text: str, feed_id: Optional[str]) -> Iterator[FeedEntry]:
    for index, match in enumerate(VEVENT_PATTERN.finditer(ical_text), start=1):
        block = f"BEGIN:VEVENT\r\n{match.group(1)}END:VEVENT\r\n"
        try:
            yield _parse_block(block, index, feed_id)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Skipping malformed VEVENT block #{index}: {e}")
            continue


def _parse_block(block: str, index: int, feed_id: Optional[str]) -> FeedEntry:
    component = Event.from_ical(block)

    start = _to_datetime(component.get('DTSTART'), 'DTSTART')
    end = _to_datetime(component.get('DTEND'), 'DTEND')

    uid = component.get('UID')
    summary = component.get('SUMMARY')

    return FeedEntry(
        uid=str(uid).strip() if uid else f'event-{index}',
        title=str(summary).strip() if summary else DEFAULT_SUMMARY,
        start=start,
        end=end,
        feed_id=feed_id
    )


def _to_datetime(prop, name: str) -> datetime:
    """Convert a DTSTART/DTEND property to a datetime (dates become midnight)."""
    if prop is None:
        raise ValueError(f"missing {name}")

    value = getattr(prop, 'dt', None)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, dt_time.min)

    raise ValueError(f"invalid {name} value")


def detect_calendar_name(ical_text: str) -> Optional[str]:
    """Return the X-WR-CALNAME of a feed, if present."""
    match = CALNAME_PATTERN.search(ical_text)
    return match.group(1).strip() if match else None


def filter_by_window(entries, start_date: Optional[date] = None,
                     end_date: Optional[date] = None) -> Iterator[FeedEntry]:
    """Yield entries whose stay intersects [start_date, end_date]."""
    for entry in entries:
        if start_date and entry.checkout_date < start_date:
            continue
        if end_date and entry.checkin_date > end_date:
            continue
        yield entry


class ICalFeedFetcher:
    """Fetcher for iCal booking feeds."""

    USER_AGENT = 'rental-calendar-sync/1.0'

    def __init__(self, timeout: int = 30, max_retries: int = 3, base_delay: float = 1):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Number of attempts per feed (default: 3)
            base_delay: Initial backoff delay in seconds (default: 1)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    def fetch_entries(self, url: str, feed_id: Optional[str] = None) -> Iterator[FeedEntry]:
        """
        Fetch a feed and return its entries.

        Args:
            url: iCal feed URL
            feed_id: Identifier stamped on each entry

        Returns:
            Lazy iterator of FeedEntry objects

        Raises:
            FetchError: If the feed cannot be retrieved
            ParseError: If the feed is not an iCal calendar
        """
        ical_text = self.fetch_text(url)
        return parse_feed(ical_text, feed_id=feed_id)

    def fetch_text(self, url: str) -> str:
        """
        Fetch raw iCal text with retry logic.

        Args:
            url: iCal feed URL

        Returns:
            Feed body as string

        Raises:
            FetchError: If all retry attempts fail
        """
        headers = {
            'Accept': 'text/calendar',
            'User-Agent': self.USER_AGENT
        }

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching iCal feed (attempt {attempt + 1}/{self.max_retries})")
                response = requests.get(url, headers=headers, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Feed request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts to fetch feed failed. Last error: {e}"
                    )
                    raise FetchError(f"Failed to fetch iCal feed: {e}") from e

        raise FetchError('Failed to fetch iCal feed: no attempts made')
