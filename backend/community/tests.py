"""
Tests for the hostel community

Focus areas:
1. Vote ledger toggle semantics and tallies
2. Gating: nothing is written for unapproved / non-steward callers
3. Feed ordering, enrichment and graceful degradation (no N+1)
4. Change stream: signals, refresh sequencing, the WebSocket consumer
"""

import time
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.core.management import call_command
from django.db import DatabaseError, IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from django.test.utils import CaptureQueriesContext
from django.utils import timezone
from rest_framework.test import APIClient

from accounts import identity
from accounts.models import Profile, Role, UserRole

from .consumers import FeedConsumer
from .exceptions import AuthError, Conflict, NotFound, NotSignedIn, ValidationError
from .models import Channel, Comment, PollOption, Post, Vote
from .queries import build_feed, get_vote_tally
from .realtime import INSERT, UPDATE, FeedRefreshSequence, feed_group_name
from .services import (
    cast_comment_vote,
    cast_poll_vote,
    cast_vote,
    create_channel,
    create_comment,
    create_post,
    set_post_pinned,
)

IN_MEMORY_LAYERS = {'default': {'BACKEND': 'channels.layers.InMemoryChannelLayer'}}


def make_user(email, full_name=None, approved=True, role=Role.MEMBER):
    user = identity.sign_up(email, 'Corridor-Lamp-47', metadata={'full_name': full_name or email})
    Profile.objects.filter(user=user).update(is_approved=approved)
    UserRole.objects.filter(user=user).update(role=role)
    return user


class CommunityTestMixin:

    def setUp(self):
        self.steward = make_user('steward@hostel.local', 'Steward', role=Role.STEWARD)
        self.alice = make_user('alice@hostel.local', 'Alice')
        self.bob = make_user('bob@hostel.local', 'Bob')
        self.pending = make_user('pending@hostel.local', 'Pending', approved=False)
        self.general = Channel.objects.create(name='general', created_by=self.steward)
        self.post = Post.objects.create(channel=self.general, author=self.alice, title='Welcome')


class VoteLedgerTestCase(CommunityTestMixin, TestCase):
    """
    CRITICAL: These tests verify that:
    1. Same direction twice = no row
    2. Opposite direction = one row, overwritten
    3. vote_count is always the sum of current rows
    """

    def test_same_direction_twice_removes_vote(self):
        first = cast_vote(self.bob, self.post.id, 1)
        second = cast_vote(self.bob, self.post.id, 1)

        self.assertEqual(first.action, 'created')
        self.assertEqual(second.action, 'removed')
        self.assertEqual(second.user_vote, 0)
        self.assertFalse(Vote.objects.filter(post=self.post, user=self.bob).exists())

    def test_up_then_down_overwrites(self):
        cast_vote(self.bob, self.post.id, 1)
        result = cast_vote(self.bob, self.post.id, -1)

        self.assertEqual(result.action, 'changed')
        self.assertEqual(result.user_vote, -1)
        self.assertEqual(result.vote_count, -1)
        votes = Vote.objects.filter(post=self.post, user=self.bob)
        self.assertEqual(votes.count(), 1)
        self.assertEqual(votes.get().vote_type, -1)

    def test_tally_is_sum_of_rows(self):
        casts = [(self.bob, -1), (self.alice, 1), (self.steward, 1), (self.bob, 1), (self.steward, 1)]
        for voter, vote_type in casts:
            result = cast_vote(voter, self.post.id, vote_type)
            rows = Vote.objects.filter(post=self.post).values_list('vote_type', flat=True)
            self.assertEqual(result.vote_count, sum(rows))

        # alice +1, bob flipped to +1, steward toggled off
        self.assertEqual(get_vote_tally(post_id=self.post.id), 2)
        self.assertEqual(Vote.objects.filter(post=self.post).count(), 2)

    def test_unapproved_vote_refused_before_write(self):
        with self.assertRaises(AuthError):
            cast_vote(self.pending, self.post.id, 1)
        with self.assertRaises(NotSignedIn):
            cast_vote(AnonymousUser(), self.post.id, 1)
        self.assertEqual(Vote.objects.count(), 0)

    def test_invalid_vote_type(self):
        for bad in (0, 2, True, '1'):
            with self.assertRaises(ValidationError):
                cast_vote(self.bob, self.post.id, bad)
        self.assertEqual(Vote.objects.count(), 0)

    def test_vote_on_missing_post(self):
        with self.assertRaises(NotFound):
            cast_vote(self.bob, 999999, 1)

    def test_comment_vote_toggle(self):
        comment = create_comment(self.bob, self.post.id, 'Nice')

        cast_comment_vote(self.alice, comment.id, -1)
        self.assertEqual(get_vote_tally(comment_id=comment.id), -1)
        cast_comment_vote(self.alice, comment.id, -1)
        self.assertEqual(get_vote_tally(comment_id=comment.id), 0)
        # Comment votes never leak into the post tally
        self.assertEqual(get_vote_tally(post_id=self.post.id), 0)


class VoteConstraintTestCase(CommunityTestMixin, TransactionTestCase):
    """The uniqueness guarantee lives in the database, not only in cast_vote()."""

    def test_database_rejects_second_row_for_same_pair(self):
        Vote.objects.create(post=self.post, user=self.bob, vote_type=1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Vote.objects.create(post=self.post, user=self.bob, vote_type=-1)
        self.assertEqual(Vote.objects.filter(post=self.post, user=self.bob).count(), 1)

    def test_database_rejects_vote_without_target(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Vote.objects.create(user=self.bob, vote_type=1)

    def test_lost_insert_race_becomes_upsert(self):
        # Another tab inserted after our read saw no vote
        Vote.objects.create(post=self.post, user=self.bob, vote_type=1)

        with patch.object(Vote.objects, 'select_for_update', return_value=Vote.objects.none()):
            result = cast_vote(self.bob, self.post.id, -1)

        self.assertEqual(result.action, 'changed')
        self.assertEqual(Vote.objects.get(post=self.post, user=self.bob).vote_type, -1)


class ChannelCatalogTestCase(CommunityTestMixin, TestCase):

    def test_duplicate_channel_conflicts(self):
        events = create_channel(self.steward, 'events', 'Fests and nights')
        self.assertEqual(events.description, 'Fests and nights')

        with self.assertRaises(Conflict):
            create_channel(self.steward, '  events ')
        self.assertEqual(Channel.objects.filter(name='events').count(), 1)

    def test_member_cannot_create_channel(self):
        with self.assertRaises(AuthError):
            create_channel(self.alice, 'events')
        self.assertFalse(Channel.objects.filter(name='events').exists())

    def test_blank_name(self):
        with self.assertRaises(ValidationError):
            create_channel(self.steward, '   ')


class PostLedgerTestCase(CommunityTestMixin, TestCase):

    def test_blank_title_rejected_before_write(self):
        before = Post.objects.count()
        with self.assertRaises(ValidationError):
            create_post(self.alice, self.general.id, '   ')
        self.assertEqual(Post.objects.count(), before)

    def test_unapproved_cannot_post(self):
        before = Post.objects.count()
        with self.assertRaises(AuthError):
            create_post(self.pending, self.general.id, 'Hello')
        self.assertEqual(Post.objects.count(), before)

    def test_missing_channel(self):
        with self.assertRaises(NotFound):
            create_post(self.alice, 999999, 'Hello')

    def test_blank_optional_fields_stored_as_null(self):
        post = create_post(self.alice, self.general.id, '  Mess menu  ', content=' ', flair='')

        self.assertEqual(post.title, 'Mess menu')
        self.assertIsNone(post.content)
        self.assertIsNone(post.flair)
        self.assertFalse(post.is_pinned)
        self.assertFalse(post.is_poll)

    def test_poll_post(self):
        with self.assertRaises(ValidationError):
            create_post(self.alice, self.general.id, 'Movie night?', poll_options=['Yes', ' yes ', ''])

        post = create_post(self.alice, self.general.id, 'Movie night?', poll_options=['Yes', 'No'])
        self.assertTrue(post.is_poll)
        self.assertEqual(
            list(post.poll_options.values_list('option_text', flat=True)),
            ['Yes', 'No']
        )

    def test_poll_vote_once_per_poll(self):
        post = create_post(self.alice, self.general.id, 'Movie night?', poll_options=['Yes', 'No'])
        yes, no = post.poll_options.all()

        option = cast_poll_vote(self.bob, yes.id)
        self.assertEqual(option.votes, 1)

        with self.assertRaises(Conflict):
            cast_poll_vote(self.bob, no.id)
        no.refresh_from_db()
        self.assertEqual(no.votes, 0)

    def test_pin_is_steward_only(self):
        with self.assertRaises(AuthError):
            set_post_pinned(self.alice, self.post.id, True)

        set_post_pinned(self.steward, self.post.id, True)
        self.post.refresh_from_db()
        self.assertTrue(self.post.is_pinned)

    def test_reply_must_stay_in_post(self):
        other = Post.objects.create(channel=self.general, author=self.bob, title='Other')
        root = create_comment(self.bob, self.post.id, 'Root')

        reply = create_comment(self.alice, self.post.id, 'Reply', parent_id=root.id)
        self.assertEqual(reply.parent_id, root.id)

        with self.assertRaises(ValidationError):
            create_comment(self.alice, other.id, 'Wrong thread', parent_id=root.id)
        with self.assertRaises(NotFound):
            create_comment(self.alice, self.post.id, 'Ghost parent', parent_id=999999)
        with self.assertRaises(ValidationError):
            create_comment(self.alice, self.post.id, '  ')


class FeedAggregatorTestCase(CommunityTestMixin, TestCase):

    def test_welcome_scenario(self):
        cast_vote(self.bob, self.post.id, 1)

        alice_item = build_feed(self.alice)[0]
        bob_item = build_feed(self.bob)[0]

        self.assertEqual(alice_item['title'], 'Welcome')
        self.assertEqual(alice_item['channel_name'], 'general')
        self.assertEqual(alice_item['author']['full_name'], 'Alice')
        self.assertEqual(alice_item['vote_count'], 1)
        self.assertEqual(alice_item['user_vote'], 0)
        self.assertEqual(bob_item['user_vote'], 1)

    def test_ordering_pinned_then_newest_then_insertion(self):
        Post.objects.all().delete()
        same_time = timezone.now() - timedelta(hours=1)
        older = Post.objects.create(channel=self.general, author=self.alice, title='older',
                                    created_at=same_time - timedelta(hours=1))
        tie_a = Post.objects.create(channel=self.general, author=self.alice, title='tie-a', created_at=same_time)
        tie_b = Post.objects.create(channel=self.general, author=self.alice, title='tie-b', created_at=same_time)
        newest = Post.objects.create(channel=self.general, author=self.alice, title='newest')
        pinned = Post.objects.create(channel=self.general, author=self.alice, title='pinned',
                                     created_at=same_time - timedelta(days=3), is_pinned=True)

        ids = [item['id'] for item in build_feed(self.alice)]
        self.assertEqual(ids, [pinned.id, newest.id, tie_a.id, tie_b.id, older.id])

    def test_channel_filter(self):
        events = Channel.objects.create(name='events', created_by=self.steward)
        Post.objects.create(channel=events, author=self.bob, title='Hostel night')

        self.assertEqual({i['channel_name'] for i in build_feed(self.alice)}, {'general', 'events'})
        self.assertEqual([i['title'] for i in build_feed(self.alice, events.id)], ['Hostel night'])

        with self.assertRaises(NotFound):
            build_feed(self.alice, 999999)

    def test_comment_count_and_polls(self):
        create_comment(self.bob, self.post.id, 'First')
        create_comment(self.alice, self.post.id, 'Second')
        poll = create_post(self.alice, self.general.id, 'Poll', poll_options=['A', 'B'])

        items = {item['id']: item for item in build_feed(self.alice)}
        self.assertEqual(items[self.post.id]['comment_count'], 2)
        self.assertEqual(items[self.post.id]['poll_options'], [])
        self.assertEqual([o['option_text'] for o in items[poll.id]['poll_options']], ['A', 'B'])

    def test_missing_profile_uses_placeholder(self):
        Profile.objects.filter(user=self.alice).delete()

        item = build_feed(self.bob)[0]
        self.assertEqual(item['author'], {'full_name': 'Unknown', 'avatar_url': None})

    def test_failed_lookup_degrades_instead_of_aborting(self):
        cast_vote(self.bob, self.post.id, 1)
        Post.objects.create(channel=self.general, author=self.bob, title='Second')

        with patch('community.queries._fetch_author_profiles', side_effect=DatabaseError('down')):
            feed = build_feed(self.bob)

        self.assertEqual(len(feed), 2)
        self.assertTrue(all(item['author']['full_name'] == 'Unknown' for item in feed))
        welcome = next(item for item in feed if item['id'] == self.post.id)
        self.assertEqual(welcome['vote_count'], 1)
        self.assertEqual(welcome['user_vote'], 1)

    def test_unapproved_cannot_read_feed(self):
        with self.assertRaises(AuthError):
            build_feed(self.pending)

    def test_no_n_plus_one_queries(self):
        """Building a 30-post feed must not cost a query per post."""
        for i in range(30):
            post = Post.objects.create(channel=self.general, author=self.bob, title=f'Post {i}')
            Comment.objects.create(post=post, author=self.alice, content='hi')
            Vote.objects.create(post=post, user=self.alice, vote_type=1)

        with CaptureQueriesContext(connection) as context:
            feed = build_feed(self.alice)

        self.assertEqual(len(feed), 31)
        self.assertLessEqual(
            len(context), 8,
            f"Expected <=8 queries, got {len(context)}. Queries: {[q['sql'][:100] for q in context]}"
        )


class ChangeStreamTestCase(CommunityTestMixin, TestCase):

    def test_post_insert_and_update_broadcast_after_commit(self):
        with patch('community.signals.broadcast_post_change') as broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                post = create_post(self.alice, self.general.id, 'Fresh')
            broadcast.assert_called_once_with(INSERT, post.id, self.general.id)

            broadcast.reset_mock()
            with self.captureOnCommitCallbacks(execute=True):
                set_post_pinned(self.steward, post.id, True)
            broadcast.assert_called_once_with(UPDATE, post.id, self.general.id)

    def test_votes_do_not_touch_post_stream(self):
        with patch('community.signals.broadcast_post_change') as broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                cast_vote(self.bob, self.post.id, 1)
            broadcast.assert_not_called()

    def test_refresh_sequence_drops_stale_results(self):
        sequence = FeedRefreshSequence()
        older = sequence.next()
        newer = sequence.next()

        self.assertFalse(sequence.is_current(older))
        self.assertTrue(sequence.is_current(newer))
        self.assertEqual(sequence.latest, newer)


@override_settings(CHANNEL_LAYERS=IN_MEMORY_LAYERS)
class FeedConsumerTestCase(CommunityTestMixin, TransactionTestCase):

    def communicator_for(self, user):
        communicator = WebsocketCommunicator(FeedConsumer.as_asgi(), '/ws/community/feed/')
        communicator.scope['user'] = user
        return communicator

    async def test_feed_pushed_on_connect_and_on_post_change(self):
        communicator = self.communicator_for(self.alice)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'feed')
        self.assertEqual([item['title'] for item in message['items']], ['Welcome'])

        await database_sync_to_async(create_post)(self.bob, self.general.id, 'Live update')

        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'feed')
        self.assertEqual([item['title'] for item in message['items']], ['Live update', 'Welcome'])

        await communicator.disconnect()

    async def test_filter_action(self):
        events = await database_sync_to_async(Channel.objects.create)(name='events')
        communicator = self.communicator_for(self.alice)
        await communicator.connect()
        await communicator.receive_json_from(timeout=5)

        await communicator.send_json_to({'action': 'filter', 'channel_id': events.id})
        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['channel_id'], events.id)
        self.assertEqual(message['items'], [])

        await communicator.send_json_to({'action': 'dance'})
        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'error')

        await communicator.disconnect()

    async def test_filter_to_missing_channel_keeps_previous_filter(self):
        communicator = self.communicator_for(self.alice)
        await communicator.connect()
        await communicator.receive_json_from(timeout=5)

        await communicator.send_json_to({'action': 'filter', 'channel_id': 999999})
        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'error')
        self.assertEqual(message['code'], 'not_found')

        await database_sync_to_async(create_post)(self.bob, self.general.id, 'Still live')

        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'feed')
        self.assertIsNone(message['channel_id'])
        self.assertEqual([item['title'] for item in message['items']], ['Still live', 'Welcome'])

        await communicator.disconnect()

    async def test_filter_rejects_boolean_channel_id(self):
        communicator = self.communicator_for(self.alice)
        await communicator.connect()
        await communicator.receive_json_from(timeout=5)

        await communicator.send_json_to({'action': 'filter', 'channel_id': True})
        message = await communicator.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'error')
        self.assertEqual(message['code'], 'validation_error')
        self.assertTrue(await communicator.receive_nothing())

        await communicator.disconnect()

    async def test_late_recompute_is_dropped(self):
        events = await database_sync_to_async(Channel.objects.create)(name='events')
        communicator = self.communicator_for(self.alice)
        await communicator.connect()
        await communicator.receive_json_from(timeout=5)
        await communicator.send_json_to({'action': 'filter', 'channel_id': events.id})
        await communicator.receive_json_from(timeout=5)

        real_load_feed = FeedConsumer.load_feed

        def slow_for_events(consumer, channel_id):
            if channel_id == events.id:
                time.sleep(0.5)
            return real_load_feed(consumer, channel_id)

        with patch.object(FeedConsumer, 'load_feed', autospec=True, side_effect=slow_for_events):
            # The slow recompute starts first but is superseded by the filter change
            await communicator.send_json_to({'action': 'refresh'})
            await communicator.send_json_to({'action': 'filter', 'channel_id': None})

            message = await communicator.receive_json_from(timeout=5)
            self.assertEqual(message['type'], 'feed')
            self.assertIsNone(message['channel_id'])
            self.assertEqual([item['title'] for item in message['items']], ['Welcome'])
            self.assertTrue(await communicator.receive_nothing(timeout=1))

        await communicator.disconnect()

    async def test_disconnect_leaves_the_change_group(self):
        layer = get_channel_layer()
        members_before = len(layer.groups.get(feed_group_name(), {}))
        leaving = self.communicator_for(self.alice)
        staying = self.communicator_for(self.bob)
        for communicator in (leaving, staying):
            await communicator.connect()
            await communicator.receive_json_from(timeout=5)
        self.assertEqual(len(layer.groups[feed_group_name()]), members_before + 2)

        await leaving.disconnect()
        self.assertEqual(len(layer.groups.get(feed_group_name(), {})), members_before + 1)

        await layer.group_send(feed_group_name(), {
            'type': 'posts.changed', 'event_type': INSERT, 'post_id': self.post.id,
            'channel_id': self.general.id,
        })
        message = await staying.receive_json_from(timeout=5)
        self.assertEqual(message['type'], 'feed')
        self.assertTrue(await leaving.receive_nothing())

        await staying.disconnect()
        self.assertEqual(len(layer.groups.get(feed_group_name(), {})), members_before)

    async def test_unapproved_and_anonymous_rejected(self):
        for user in (self.pending, AnonymousUser()):
            communicator = self.communicator_for(user)
            connected, _ = await communicator.connect()
            self.assertFalse(connected)


class CommunityAPITestCase(CommunityTestMixin, TestCase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_vote_endpoint_toggles(self):
        self.client.force_login(self.bob)
        url = f'/api/posts/{self.post.id}/vote/'

        response = self.client.post(url, {'vote_type': 1}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {'action': 'created', 'user_vote': 1, 'vote_count': 1})

        response = self.client.post(url, {'vote_type': 1}, format='json')
        self.assertEqual(response.data['action'], 'removed')
        self.assertEqual(response.data['vote_count'], 0)

    def test_feed_endpoint(self):
        self.client.force_login(self.alice)
        response = self.client.get('/api/feed/', {'channel': self.general.id})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data[0]['title'], 'Welcome')
        self.assertEqual(response.data[0]['author']['full_name'], 'Alice')

        response = self.client.get('/api/feed/', {'channel': 'abc'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'validation_error')

    def test_pending_user_gets_403(self):
        self.client.force_login(self.pending)

        self.assertEqual(self.client.get('/api/feed/').status_code, 403)
        response = self.client.post(
            '/api/posts/',
            {'channel_id': self.general.id, 'title': 'Hi'},
            format='json'
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['code'], 'auth_error')

    def test_anonymous_gets_401(self):
        self.assertEqual(self.client.get('/api/feed/').status_code, 401)

    def test_create_post_endpoint(self):
        self.client.force_login(self.alice)

        response = self.client.post(
            '/api/posts/',
            {'channel_id': self.general.id, 'title': '   '},
            format='json'
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            '/api/posts/',
            {'channel_id': self.general.id, 'title': 'Lost keys', 'flair': 'help'},
            format='json'
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['flair'], 'help')

    def test_channel_endpoints(self):
        self.client.force_login(self.alice)
        self.assertEqual(self.client.get('/api/channels/').status_code, 200)
        self.assertEqual(self.client.post('/api/channels/', {'name': 'events'}, format='json').status_code, 403)

        self.client.force_login(self.steward)
        self.assertEqual(self.client.post('/api/channels/', {'name': 'events'}, format='json').status_code, 201)
        response = self.client.post('/api/channels/', {'name': 'events'}, format='json')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['code'], 'conflict')

    def test_comment_and_pin_endpoints(self):
        self.client.force_login(self.bob)
        response = self.client.post(
            f'/api/posts/{self.post.id}/comments/',
            {'content': 'Hello!'},
            format='json'
        )
        self.assertEqual(response.status_code, 201)

        response = self.client.post(f'/api/posts/{self.post.id}/pin/', {'is_pinned': True}, format='json')
        self.assertEqual(response.status_code, 403)

        self.client.force_login(self.steward)
        response = self.client.post(f'/api/posts/{self.post.id}/pin/', {'is_pinned': True}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['is_pinned'])


class SeedDataTestCase(TestCase):

    def test_seed_data_builds_a_usable_community(self):
        call_command('seed_data', users=4, posts=8, comments=10, stdout=StringIO())

        steward = Profile.objects.get(email='steward@hostel.local').user
        feed = build_feed(steward)

        self.assertEqual(len(feed), 8)
        self.assertTrue(feed[0]['is_pinned'])
        self.assertTrue(PollOption.objects.exists())
