"""Unit tests for the iCal feed fetcher and parser."""
from datetime import date, datetime

import pytest
import responses

from fetcher.ical_feed import (
    ICalFeedFetcher, detect_calendar_name, filter_by_window, parse_feed
)
from processor.errors import FetchError, ParseError

FEED_URL = 'https://calendar.example.com/listing-1.ics'


class TestParseFeed:
    """Test cases for parse_feed."""

    def test_parses_every_well_formed_event(self, ical_feed):
        """Test that N well-formed VEVENT blocks yield N entries."""
        text = ical_feed(
            ('uid-1', '20240310', '20240315', 'Guest One'),
            ('uid-2', '20240315', '20240320', 'Guest Two'),
            ('uid-3', '20240401', '20240405', 'Guest Three'),
        )

        entries = list(parse_feed(text, feed_id='feed-1'))

        assert len(entries) == 3
        assert entries[0].uid == 'uid-1'
        assert entries[0].title == 'Guest One'
        assert entries[0].start == datetime(2024, 3, 10)
        assert entries[0].checkout_date == date(2024, 3, 15)
        assert all(e.feed_id == 'feed-1' for e in entries)

    def test_entry_count_stable_across_reparse(self, ical_feed):
        """Test that parsing the same bytes twice gives the same entries."""
        text = ical_feed(
            ('uid-1', '20240310', '20240315'),
            ('uid-2', '20240315', '20240320'),
        )

        first = list(parse_feed(text))
        second = list(parse_feed(text))

        assert len(first) == len(second) == 2
        assert [e.uid for e in first] == [e.uid for e in second]

    def test_defaults_for_missing_uid_and_summary(self, ical_feed):
        """Test defaults substituted for optional properties."""
        text = ical_feed((None, '20240310', '20240315', None))

        entries = list(parse_feed(text))

        assert len(entries) == 1
        assert entries[0].uid == 'event-1'
        assert entries[0].title == 'Reserved'

    def test_skips_block_without_end_date(self, ical_feed):
        """Test that a malformed block is skipped, not fatal."""
        text = ical_feed(
            ('uid-1', '20240310', None),
            ('uid-2', '20240315', '20240320'),
        )

        entries = list(parse_feed(text))

        assert [e.uid for e in entries] == ['uid-2']

    def test_datetime_values_are_kept(self):
        """Test DTSTART/DTEND with a time component."""
        text = (
            'BEGIN:VCALENDAR\r\nVERSION:2.0\r\n'
            'BEGIN:VEVENT\r\nUID:timed\r\n'
            'DTSTART:20240310T150000\r\nDTEND:20240315T100000\r\n'
            'END:VEVENT\r\nEND:VCALENDAR\r\n'
        )

        entries = list(parse_feed(text))

        assert entries[0].start == datetime(2024, 3, 10, 15, 0)
        assert entries[0].checkout_date == date(2024, 3, 15)

    def test_rejects_non_calendar_document(self):
        """Test that a non-iCal document raises ParseError."""
        with pytest.raises(ParseError):
            parse_feed('<html><body>Not found</body></html>')

    def test_empty_calendar(self, ical_feed):
        """Test a calendar without events."""
        assert list(parse_feed(ical_feed())) == []


class TestFeedHelpers:
    """Test cases for calendar name detection and window filtering."""

    def test_detect_calendar_name(self, ical_feed):
        text = ical_feed(('uid-1', '20240310', '20240315'), calendar_name='Beach House')
        assert detect_calendar_name(text) == 'Beach House'

    def test_detect_calendar_name_missing(self, ical_feed):
        assert detect_calendar_name(ical_feed()) is None

    def test_filter_by_window(self, ical_feed):
        """Test that only stays intersecting the window are kept."""
        text = ical_feed(
            ('before', '20240101', '20240105'),
            ('inside', '20240310', '20240315'),
            ('after', '20240601', '20240605'),
        )

        entries = list(filter_by_window(
            parse_feed(text), start_date=date(2024, 3, 1), end_date=date(2024, 3, 31)
        ))

        assert [e.uid for e in entries] == ['inside']


class TestICalFeedFetcher:
    """Test cases for ICalFeedFetcher class."""

    @responses.activate
    def test_fetch_entries_success(self, ical_feed):
        """Test successful feed fetching and parsing."""
        responses.add(
            responses.GET,
            FEED_URL,
            body=ical_feed(('uid-1', '20240310', '20240315')),
            status=200,
            content_type='text/calendar'
        )

        fetcher = ICalFeedFetcher(timeout=5, base_delay=0)
        entries = list(fetcher.fetch_entries(FEED_URL, feed_id='feed-1'))

        assert len(entries) == 1
        assert entries[0].feed_id == 'feed-1'
        assert responses.calls[0].request.headers['Accept'] == 'text/calendar'

    @responses.activate
    def test_fetch_with_retry_success(self, ical_feed):
        """Test retry logic succeeds after an initial failure."""
        responses.add(responses.GET, FEED_URL, status=503)
        responses.add(
            responses.GET, FEED_URL,
            body=ical_feed(('uid-1', '20240310', '20240315')), status=200
        )

        fetcher = ICalFeedFetcher(timeout=5, max_retries=3, base_delay=0)
        entries = list(fetcher.fetch_entries(FEED_URL))

        assert len(entries) == 1
        assert len(responses.calls) == 2

    @responses.activate
    def test_fetch_all_retries_fail(self):
        """Test FetchError after all retry attempts fail."""
        responses.add(responses.GET, FEED_URL, status=500)

        fetcher = ICalFeedFetcher(timeout=5, max_retries=3, base_delay=0)

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch_entries(FEED_URL)

        assert 'Failed to fetch iCal feed' in exc_info.value.message
        assert len(responses.calls) == 3

    @responses.activate
    def test_fetch_non_calendar_body(self):
        """Test ParseError when the URL does not serve a calendar."""
        responses.add(responses.GET, FEED_URL, body='<html></html>', status=200)

        fetcher = ICalFeedFetcher(timeout=5, base_delay=0)

        with pytest.raises(ParseError):
            fetcher.fetch_entries(FEED_URL)
