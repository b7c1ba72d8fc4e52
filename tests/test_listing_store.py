"""Unit tests for ListingStore."""
import pytest

from processor.errors import NotFoundError, ValidationError
from processor.models import Listing
from storage.listing_store import validate_feed_url


class TestValidateFeedUrl:
    """Test cases for feed URL checks."""

    def test_webcal_becomes_https(self):
        assert validate_feed_url(' webcal://example.com/cal.ics ') == 'https://example.com/cal.ics'

    def test_rejects_other_schemes(self):
        with pytest.raises(ValidationError):
            validate_feed_url('ftp://example.com/cal.ics')


class TestListingStore:
    """Test cases for listing and feed management."""

    def test_create_listing_with_feeds(self, listing_store):
        listing = listing_store.create_listing(
            'Beach House', 'ext-1', hours=3,
            ical_urls=['https://a.example.com/1.ics', 'https://b.example.com/2.ics']
        )

        stored = listing_store.get_listing(listing.listing_id)
        assert stored.name == 'Beach House'
        assert stored.hours == 3.0
        feeds = listing_store.get_feeds_for_listing(listing.listing_id)
        assert sorted(f.url for f in feeds) == [
            'https://a.example.com/1.ics', 'https://b.example.com/2.ics'
        ]
        assert all(f.is_active and f.name == 'Beach House' for f in feeds)
        assert [listing.listing_id] == [s.listing_id for s in listing_store.get_syncable_listings()]

    def test_invalid_url_creates_nothing(self, listing_store):
        with pytest.raises(ValidationError):
            listing_store.create_listing('Beach House', 'ext-1', ical_urls=['not a url'])

        assert listing_store.get_listings() == []

    def test_update_listing_keeps_unset_fields(self, listing_store):
        listing_store.put_listing(Listing('listing-1', 'Beach House', external_id='ext-1'))

        updated = listing_store.update_listing('listing-1', hours=4.5)

        assert updated.name == 'Beach House'
        assert listing_store.get_listing('listing-1').hours == 4.5

    def test_update_missing_listing(self, listing_store):
        with pytest.raises(NotFoundError):
            listing_store.update_listing('missing', name='x')

    def test_delete_listing_removes_feeds(self, listing_store):
        listing = listing_store.create_listing(
            'Beach House', 'ext-1', ical_urls=['https://a.example.com/1.ics']
        )
        other = listing_store.create_listing(
            'Lake Cabin', 'ext-2', ical_urls=['https://b.example.com/2.ics']
        )

        assert listing_store.delete_listing(listing.listing_id) == 1

        assert listing_store.get_listing(listing.listing_id) is None
        assert listing_store.get_feeds_for_listing(listing.listing_id) == []
        assert len(listing_store.get_feeds_for_listing(other.listing_id)) == 1

    def test_feed_lifecycle(self, listing_store):
        listing_store.put_listing(Listing('listing-1', 'Beach House', external_id='ext-1'))
        feed = listing_store.create_feed('listing-1', 'https://a.example.com/1.ics')

        listing_store.update_feed(feed.feed_id, is_active=False)
        assert listing_store.get_feed(feed.feed_id).is_active is False
        assert listing_store.get_feeds_by_listing() == {
            'listing-1': [listing_store.get_feed(feed.feed_id)]
        }

        listing_store.delete_feed(feed.feed_id)
        with pytest.raises(NotFoundError):
            listing_store.get_feed(feed.feed_id)
        with pytest.raises(NotFoundError):
            listing_store.delete_feed(feed.feed_id)
