"""
Community App Configuration
"""
from django.apps import AppConfig


class CommunityConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'community'

    def ready(self):
        # Import signals when app is ready: wires Post changes to the feed group
        import community.signals  # noqa
