"""Listings and iCal feed storage."""
import logging
import uuid
from typing import Dict, Iterable, List, Optional

from boto3.dynamodb.conditions import Attr

from processor.errors import NotFoundError, ValidationError
from processor.models import IcalFeed, Listing
from storage.dynamodb_manager import DynamoDBManager, utc_now_iso

logger = logging.getLogger(__name__)

FEED_URL_SCHEMES = ('http://', 'https://', 'webcal://')


def validate_feed_url(url: str) -> str:
    """
    Check that a feed URL can be fetched; webcal:// becomes https://.

    Raises:
        ValidationError: If the URL has no supported scheme
    """
    url = str(url).strip()
    if not url.lower().startswith(FEED_URL_SCHEMES):
        raise ValidationError(f"Unsupported iCal feed URL: {url}")
    if url.lower().startswith('webcal://'):
        url = 'https://' + url[len('webcal://'):]
    return url


class ListingStore(DynamoDBManager):
    """Store for listings; feeds live in a companion table."""

    def __init__(self, table_name: str, feeds_table_name: str, dynamodb=None):
        super().__init__(table_name, dynamodb=dynamodb)
        self.feeds = DynamoDBManager(feeds_table_name, dynamodb=self.dynamodb)

    def get_listings(self) -> List[Listing]:
        """Return all listings ordered by name."""
        listings = [self._item_to_listing(i) for i in self.scan_all()]
        listings.sort(key=lambda listing: (listing.name, listing.listing_id))
        return listings

    def get_syncable_listings(self) -> List[Listing]:
        """Return listings that are fed by external calendars."""
        return [listing for listing in self.get_listings() if not listing.is_manual]

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        item = self.get_item({'listing_id': listing_id})
        return self._item_to_listing(item) if item else None

    def require_listing(self, listing_id: str) -> Listing:
        listing = self.get_listing(listing_id)
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        return listing

    def put_listing(self, listing: Listing) -> None:
        item = {
            'listing_id': listing.listing_id,
            'name': listing.name,
            'hours': listing.hours
        }
        if listing.external_id:
            item['external_id'] = listing.external_id
        self.put_item(item)

    def create_listing(self, name: str, external_id: str, hours: float = 2.0,
                       ical_urls: Iterable[str] = ()) -> Listing:
        """
        Create a listing, optionally with feeds for the given URLs.

        Args:
            name: Display name
            external_id: Identifier of the listing on the booking channel
            hours: Default cleaning hours
            ical_urls: Feed URLs to attach

        Returns:
            The new Listing

        Raises:
            ValidationError: If a URL is not an iCal feed URL
        """
        urls = [validate_feed_url(u) for u in ical_urls]
        listing = Listing(
            listing_id=str(uuid.uuid4()),
            name=name,
            external_id=external_id,
            hours=hours
        )
        self.put_listing(listing)
        for url in urls:
            self.create_feed(listing.listing_id, url, name=name)

        logger.info(f"Created listing {name} with {len(urls)} feeds")
        return listing

    def update_listing(self, listing_id: str, name: Optional[str] = None,
                       external_id: Optional[str] = None,
                       hours: Optional[float] = None) -> Listing:
        """
        Change listing fields; fields left as None are kept.

        Raises:
            NotFoundError: If the listing does not exist
        """
        listing = self.require_listing(listing_id)
        if name is not None:
            listing.name = name
        if external_id is not None:
            listing.external_id = external_id
        if hours is not None:
            listing.hours = hours
        self.put_listing(listing)
        return listing

    def delete_listing(self, listing_id: str) -> int:
        """
        Delete a listing and its feeds. Stored bookings are kept.

        Returns:
            Number of feeds removed

        Raises:
            NotFoundError: If the listing does not exist
        """
        self.require_listing(listing_id)
        feeds = self.get_feeds_for_listing(listing_id)
        for feed in feeds:
            self.feeds.delete_item({'feed_id': feed.feed_id})
        self.delete_item({'listing_id': listing_id})
        logger.info(f"Deleted listing {listing_id} and {len(feeds)} feeds")
        return len(feeds)

    def get_feeds_for_listing(self, listing_id: str) -> List[IcalFeed]:
        """Return all feeds attached to a listing."""
        items = self.feeds.scan_all(FilterExpression=Attr('listing_id').eq(listing_id))
        feeds = [self._item_to_feed(i) for i in items]
        feeds.sort(key=lambda f: f.feed_id)
        return feeds

    def get_feeds_by_listing(self) -> Dict[str, List[IcalFeed]]:
        """Return every feed grouped by listing id."""
        grouped: Dict[str, List[IcalFeed]] = {}
        for item in self.feeds.scan_all():
            feed = self._item_to_feed(item)
            grouped.setdefault(feed.listing_id, []).append(feed)
        for feeds in grouped.values():
            feeds.sort(key=lambda f: f.feed_id)
        return grouped

    def get_feed(self, feed_id: str) -> IcalFeed:
        """
        Raises:
            NotFoundError: If the feed does not exist
        """
        item = self.feeds.get_item({'feed_id': feed_id})
        if not item:
            raise NotFoundError(f"iCal feed {feed_id} not found")
        return self._item_to_feed(item)

    def put_feed(self, feed: IcalFeed) -> None:
        item = {
            'feed_id': feed.feed_id,
            'listing_id': feed.listing_id,
            'url': feed.url,
            'name': feed.name,
            'is_active': feed.is_active
        }
        if feed.last_synced:
            item['last_synced'] = feed.last_synced
        self.feeds.put_item(item)

    def create_feed(self, listing_id: str, url: str, name: str = '') -> IcalFeed:
        """
        Attach a new active feed to a listing.

        Raises:
            ValidationError: If the URL is not an iCal feed URL
        """
        feed = IcalFeed(
            feed_id=f"feed-{uuid.uuid4().hex}",
            listing_id=listing_id,
            url=validate_feed_url(url),
            name=name
        )
        self.put_feed(feed)
        return feed

    def update_feed(self, feed_id: str, url: Optional[str] = None, name: Optional[str] = None,
                    is_active: Optional[bool] = None) -> IcalFeed:
        """
        Change feed fields; fields left as None are kept.

        Raises:
            NotFoundError: If the feed does not exist
            ValidationError: If the new URL is not an iCal feed URL
        """
        feed = self.get_feed(feed_id)
        if url is not None:
            feed.url = validate_feed_url(url)
        if name is not None:
            feed.name = name
        if is_active is not None:
            feed.is_active = is_active
        self.put_feed(feed)
        return feed

    def delete_feed(self, feed_id: str) -> None:
        """
        Raises:
            NotFoundError: If the feed does not exist
        """
        if not self.feeds.delete_item({'feed_id': feed_id}):
            raise NotFoundError(f"iCal feed {feed_id} not found")

    def mark_feed_synced(self, feed_id: str, synced_at: Optional[str] = None) -> None:
        """Record the last successful sync time of a feed."""
        self.feeds.update_item(
            {'feed_id': feed_id},
            set_fields={'last_synced': synced_at or utc_now_iso()}
        )

    @staticmethod
    def _item_to_listing(item: dict) -> Listing:
        return Listing(
            listing_id=item['listing_id'],
            name=item.get('name', 'Unknown Listing'),
            external_id=item.get('external_id'),
            hours=float(item.get('hours', 2.0))
        )

    @staticmethod
    def _item_to_feed(item: dict) -> IcalFeed:
        return IcalFeed(
            feed_id=item['feed_id'],
            listing_id=item['listing_id'],
            url=item['url'],
            name=item.get('name', ''),
            is_active=bool(item.get('is_active', True)),
            last_synced=item.get('last_synced')
        )


def listing_to_dict(listing: Listing, feeds: Optional[List[IcalFeed]] = None) -> dict:
    data = {
        'id': listing.listing_id,
        'name': listing.name,
        'external_id': listing.external_id,
        'hours': listing.hours,
        'is_manual': listing.is_manual
    }
    if feeds is not None:
        data['feeds'] = [feed_to_dict(f) for f in feeds]
    return data


def feed_to_dict(feed: IcalFeed) -> dict:
    return {
        'id': feed.feed_id,
        'listing_id': feed.listing_id,
        'url': feed.url,
        'name': feed.name,
        'is_active': feed.is_active,
        'last_synced': feed.last_synced
    }
