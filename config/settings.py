"""Application configuration loaded from environment variables."""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


DEFAULT_IGNORED_TITLES = ('Airbnb (Not available)',)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class AppConfig:
    """Runtime settings for the sync service."""
    table_prefix: str = 'rental-sync'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    max_retries: int = 3
    batch_size: int = 5
    lease_seconds: int = 300
    slack_webhook_url: Optional[str] = None
    auto_sync: bool = True
    ignored_titles: Tuple[str, ...] = field(default=DEFAULT_IGNORED_TITLES)
    default_checkout_time: str = '10:00:00'

    def table_name(self, suffix: str) -> str:
        """Return the physical DynamoDB table name for a logical table."""
        return f"{self.table_prefix}-{suffix}"


def load_config(environ: Optional[dict] = None) -> AppConfig:
    """
    Build an AppConfig from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        AppConfig instance
    """
    env = os.environ if environ is None else environ

    ignored = env.get('IGNORED_EVENT_TITLES')
    ignored_titles = (
        tuple(t.strip() for t in ignored.split('|') if t.strip())
        if ignored is not None else DEFAULT_IGNORED_TITLES
    )

    return AppConfig(
        table_prefix=env.get('TABLE_PREFIX', 'rental-sync'),
        log_level=env.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
        max_retries=int(env.get('MAX_RETRIES', '3')),
        batch_size=int(env.get('SYNC_BATCH_SIZE', '5')),
        lease_seconds=int(env.get('SYNC_LEASE_SECONDS', '300')),
        slack_webhook_url=env.get('SLACK_WEBHOOK_URL') or None,
        auto_sync=_env_bool(env.get('AUTO_SYNC', 'true')),
        ignored_titles=ignored_titles,
        default_checkout_time=env.get('DEFAULT_CHECKOUT_TIME', '10:00:00'),
    )
