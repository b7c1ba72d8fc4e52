"""Unit tests for configuration loading."""
from config.settings import AppConfig, load_config


class TestLoadConfig:
    """Test cases for load_config."""

    def test_defaults(self):
        config = load_config({})

        assert config == AppConfig()
        assert config.batch_size == 5
        assert config.lease_seconds == 300
        assert config.slack_webhook_url is None
        assert config.ignored_titles == ('Airbnb (Not available)',)
        assert config.table_name('listings') == 'rental-sync-listings'

    def test_overrides(self):
        config = load_config({
            'TABLE_PREFIX': 'prod',
            'SYNC_BATCH_SIZE': '10',
            'SYNC_LEASE_SECONDS': '600',
            'SLACK_WEBHOOK_URL': 'https://hooks.slack.com/services/x',
            'AUTO_SYNC': 'false',
            'IGNORED_EVENT_TITLES': 'Blocked| Not available ',
        })

        assert config.table_name('listings') == 'prod-listings'
        assert config.batch_size == 10
        assert config.lease_seconds == 600
        assert config.auto_sync is False
        assert config.ignored_titles == ('Blocked', 'Not available')

    def test_empty_webhook_disables_notifications(self):
        assert load_config({'SLACK_WEBHOOK_URL': ''}).slack_webhook_url is None
