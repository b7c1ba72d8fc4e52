"""Slack webhook notifications for booking changes."""
import logging
from datetime import date
from typing import Optional

import requests

from processor.models import BookingEvent

logger = logging.getLogger(__name__)


def format_date(value: str) -> str:
    """Render an ISO date as e.g. 'Friday, March 15, 2024'."""
    d = date.fromisoformat(value[:10])
    return f"{d:%A}, {d:%B} {d.day}, {d.year}"


class SlackNotifier:
    """Posts booking change messages to a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: int = 10):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, title: str, content: str) -> bool:
        """
        Post a message with a header and a text section.

        Failures are logged and never raised.

        Args:
            title: Header text
            content: Markdown body

        Returns:
            True if the webhook accepted the message
        """
        if not self.enabled:
            logger.debug(f"Slack notifications disabled; dropping '{title}'")
            return False

        payload = {
            'text': title,
            'blocks': [
                {'type': 'header', 'text': {'type': 'plain_text', 'text': title}},
                {'type': 'section', 'text': {'type': 'mrkdwn', 'text': content}}
            ]
        }

        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Failed to send Slack notification '{title}': {e}")
            return False

        return True

    def notify_cancellation(self, booking: BookingEvent) -> bool:
        content = (
            f"*{booking.listing_name or booking.listing_id}*\n"
            f"Check-in: {format_date(booking.checkin_date)}\n"
            f"Check-out: {format_date(booking.checkout_date)}"
        )
        return self.send('Booking Cancelled', content)

    def notify_modification(self, previous: BookingEvent, current: BookingEvent) -> bool:
        lines = [f"*{current.listing_name or current.listing_id}*"]
        if previous.checkin_date != current.checkin_date:
            lines.append(
                f"Check-in: {format_date(previous.checkin_date)} → "
                f"{format_date(current.checkin_date)}"
            )
        if previous.checkout_date != current.checkout_date:
            lines.append(
                f"Check-out: {format_date(previous.checkout_date)} → "
                f"{format_date(current.checkout_date)}"
            )
        if len(lines) == 1:
            lines.append(
                f"{format_date(current.checkin_date)} - {format_date(current.checkout_date)}"
            )
        return self.send('Booking Modified', '\n'.join(lines))
