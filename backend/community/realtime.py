"""
Post change stream.

Writers publish one message per post insert/update/delete to a Channels
group; every open feed socket is a member of that group and recomputes its
feed when a message arrives (see consumers.FeedConsumer).

Bursts are not coalesced: N changes can mean N recomputes per socket.
Each recompute is idempotent, and FeedRefreshSequence drops results that
finish after a newer one was started.
"""

import logging
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'


def feed_group_name() -> str:
    return settings.COMMUNITY_FEED_GROUP


def broadcast_post_change(event_type: str, post_id: int, channel_id: Optional[int]) -> None:
    """Tell every subscribed feed that a post changed. Best effort."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug("No channel layer configured, dropping %s for post %s", event_type, post_id)
        return

    try:
        async_to_sync(channel_layer.group_send)(
            feed_group_name(),
            {
                'type': 'posts.changed',
                'event_type': event_type,
                'post_id': post_id,
                'channel_id': channel_id,
            }
        )
    except Exception:
        # The write already committed; subscribers still converge on their next refresh
        logger.warning("Could not broadcast %s for post %s", event_type, post_id, exc_info=True)


class FeedRefreshSequence:
    """
    Monotonic token source for feed recomputes.

    Take a token before starting a recompute; when it finishes, only publish
    the result if the token is still the latest one handed out.
    """

    def __init__(self):
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def next(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest
