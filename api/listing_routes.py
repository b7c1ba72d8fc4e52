"""HTTP handlers for listings and their iCal feeds."""
import logging
from typing import Any, Dict, List

from api.router import ApiRequest, Router, parse_hours
from api.services import Services
from processor.errors import ValidationError
from storage.listing_store import feed_to_dict, listing_to_dict

logger = logging.getLogger(__name__)


def _optional_text(request: ApiRequest, name: str):
    value = request.body.get(name)
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        raise ValidationError(f"{name} must not be empty")
    return value


def _url_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ValidationError('icalUrls must be a list of URLs')
    return [str(u) for u in value if u]


class ListingRoutes:
    """Endpoints for registering listings and managing their feeds."""

    def __init__(self, services: Services):
        self.store = services.listing_store

    def register(self, router: Router) -> None:
        router.add('GET', '/api/listings', self.list_listings)
        router.add('POST', '/api/listings', self.create_listing)
        router.add('GET', '/api/listings/{listingId}', self.get_listing)
        router.add('PATCH', '/api/listings/{listingId}', self.update_listing)
        router.add('DELETE', '/api/listings/{listingId}', self.delete_listing)
        router.add('GET', '/api/listings/{listingId}/feeds', self.list_feeds)
        router.add('POST', '/api/listings/{listingId}/feeds', self.create_feed)
        router.add('PATCH', '/api/ical-feeds/{feedId}', self.update_feed)
        router.add('DELETE', '/api/ical-feeds/{feedId}', self.delete_feed)

    def list_listings(self, request: ApiRequest) -> Dict[str, Any]:
        feeds = self.store.get_feeds_by_listing()
        return {
            'listings': [
                listing_to_dict(listing, feeds.get(listing.listing_id, []))
                for listing in self.store.get_listings()
            ]
        }

    def create_listing(self, request: ApiRequest):
        name, external_id = request.require('name', 'externalId')
        hours = parse_hours(request.body.get('hours'))
        listing = self.store.create_listing(
            str(name).strip(),
            str(external_id).strip(),
            hours=hours if hours is not None else 2.0,
            ical_urls=_url_list(request.body.get('icalUrls'))
        )
        feeds = self.store.get_feeds_for_listing(listing.listing_id)
        return 201, {'listing': listing_to_dict(listing, feeds)}

    def get_listing(self, request: ApiRequest) -> Dict[str, Any]:
        listing = self.store.require_listing(request.path_params['listingId'])
        feeds = self.store.get_feeds_for_listing(listing.listing_id)
        return {'listing': listing_to_dict(listing, feeds)}

    def update_listing(self, request: ApiRequest) -> Dict[str, Any]:
        listing = self.store.update_listing(
            request.path_params['listingId'],
            name=_optional_text(request, 'name'),
            external_id=_optional_text(request, 'externalId'),
            hours=parse_hours(request.body.get('hours'))
        )
        return {'listing': listing_to_dict(listing)}

    def delete_listing(self, request: ApiRequest) -> Dict[str, Any]:
        listing_id = request.path_params['listingId']
        removed = self.store.delete_listing(listing_id)
        return {'id': listing_id, 'feedsRemoved': removed}

    def list_feeds(self, request: ApiRequest) -> Dict[str, Any]:
        listing = self.store.require_listing(request.path_params['listingId'])
        feeds = self.store.get_feeds_for_listing(listing.listing_id)
        return {'feeds': [feed_to_dict(f) for f in feeds]}

    def create_feed(self, request: ApiRequest):
        listing = self.store.require_listing(request.path_params['listingId'])
        url, = request.require('url')
        feed = self.store.create_feed(
            listing.listing_id, url, name=request.body.get('name') or listing.name
        )
        logger.info(f"Added feed {feed.feed_id} to listing {listing.name}")
        return 201, {'feed': feed_to_dict(feed)}

    def update_feed(self, request: ApiRequest) -> Dict[str, Any]:
        is_active = request.body.get('isActive')
        if is_active is not None and not isinstance(is_active, bool):
            raise ValidationError('isActive must be true or false')
        feed = self.store.update_feed(
            request.path_params['feedId'],
            url=_optional_text(request, 'url'),
            name=request.body.get('name'),
            is_active=is_active
        )
        return {'feed': feed_to_dict(feed)}

    def delete_feed(self, request: ApiRequest) -> Dict[str, Any]:
        feed_id = request.path_params['feedId']
        self.store.delete_feed(feed_id)
        return {'id': feed_id}
