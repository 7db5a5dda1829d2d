"""
Realtime feed over WebSocket.

One FeedConsumer per open community view. It behaves like a small actor:

- connect:    derive the Authorization Context, reject unless signed in
              AND approved, join the post change group, push the feed
- receive:    {"action": "filter", "channel_id": <id|null>}
              {"action": "refresh"}
- posts.changed (group message): recompute the full feed for the
              current filter
- disconnect: leave the group and cancel in-flight recomputes, so nothing
              is pushed to a view that is gone

Recomputes run as tasks so a slow one never blocks newer messages. Each
takes a token from FeedRefreshSequence and only the latest token's result
is sent; an older recompute that finishes late is dropped.

Server -> client messages:
    {"type": "feed", "channel_id": ..., "items": [...]}
    {"type": "error", "error": "...", "code": "..."}
"""

import asyncio
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from accounts.authz import get_authorization_context

from .exceptions import AuthError, NotFound, PortalError
from .models import Channel
from .queries import build_feed
from .realtime import FeedRefreshSequence, feed_group_name
from .serializers import FeedItemSerializer

logger = logging.getLogger(__name__)


class FeedConsumer(AsyncJsonWebsocketConsumer):

    async def connect(self):
        self.sequence = FeedRefreshSequence()
        self.channel_filter = None
        self.pending = set()
        self.group_name = None

        user = self.scope.get('user')
        authz = await database_sync_to_async(get_authorization_context)(user)
        if not authz.can_use_community:
            # Rejected at the handshake: anonymous or pending approval
            await self.close()
            return

        self.group_name = feed_group_name()
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        self.schedule_refresh()

    async def disconnect(self, close_code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
        for task in list(self.pending):
            task.cancel()

    async def receive_json(self, content, **kwargs):
        action = content.get('action') if isinstance(content, dict) else None

        if action == 'filter':
            channel_id = content.get('channel_id')
            if channel_id is not None and (isinstance(channel_id, bool) or not isinstance(channel_id, int)):
                await self.send_error("channel_id must be an integer or null.", 'validation_error')
                return
            if channel_id is not None and not await self.channel_exists(channel_id):
                # Keep the previous filter so later changes still produce a feed
                await self.send_error(f"Community {channel_id} does not exist", NotFound.code)
                return
            self.channel_filter = channel_id
            self.schedule_refresh()
        elif action == 'refresh':
            self.schedule_refresh()
        else:
            await self.send_error(f"Unknown action: {action!r}", 'validation_error')

    async def posts_changed(self, event):
        """Group message from realtime.broadcast_post_change()."""
        self.schedule_refresh()

    def schedule_refresh(self):
        token = self.sequence.next()
        task = asyncio.ensure_future(self.refresh(token, self.channel_filter))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    async def refresh(self, token, channel_id):
        try:
            items = await database_sync_to_async(self.load_feed)(channel_id)
        except AuthError as exc:
            # Approval revoked while the socket was open
            await self.send_error(exc.message, exc.code)
            await self.close()
            return
        except PortalError as exc:
            if isinstance(exc, NotFound) and self.channel_filter == channel_id:
                # Channel deleted under the filter: fall back to the full feed
                self.channel_filter = None
            if self.sequence.is_current(token):
                await self.send_error(exc.message, exc.code)
            return
        except Exception:
            logger.exception("Feed recompute failed for channel filter %r", channel_id)
            if self.sequence.is_current(token):
                await self.send_error("Could not load the feed.", 'transient_error')
            return

        if not self.sequence.is_current(token):
            logger.debug("Dropping stale feed result %s (latest %s)", token, self.sequence.latest)
            return

        await self.send_json({'type': 'feed', 'channel_id': channel_id, 'items': items})

    @database_sync_to_async
    def channel_exists(self, channel_id):
        return Channel.objects.filter(id=channel_id).exists()

    def load_feed(self, channel_id):
        feed = build_feed(self.scope.get('user'), channel_id)
        return FeedItemSerializer(feed, many=True).data

    async def send_error(self, message, code):
        await self.send_json({'type': 'error', 'error': message, 'code': code})
