"""
Community Write Services
========================

Every write to the community goes through here:

- Vote Ledger: cast_vote / cast_comment_vote (toggle semantics)
- Channel Catalog: create_channel
- Post Ledger: create_post, set_post_pinned, create_comment, cast_poll_vote

GATING:
-------
Each function derives the Authorization Context itself and runs the guard
BEFORE touching the database. The DRF permission classes are a convenience
on top; these checks are the ones that count.

VOTE TOGGLE:
------------
    same direction as my current vote -> delete it (un-vote)
    no vote / opposite direction      -> upsert keyed on (post, user)

The decision reads the ledger inside the transaction (never a cached
"my vote"), and the (post, user) unique constraint turns a concurrent
double insert into an IntegrityError that we fold into an update.
Last upsert wins; redundant toggles degrade to no-ops.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Literal, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.contrib.auth.models import User

from accounts.authz import get_authorization_context, require_member, require_steward

from .exceptions import Conflict, NotFound, ValidationError
from .models import Channel, Comment, PollOption, PollVote, Post, Vote
from .queries import get_vote_tally

logger = logging.getLogger(__name__)

VALID_VOTE_TYPES = (Vote.VoteType.UP, Vote.VoteType.DOWN)


@dataclass
class VoteResult:
    """Result of a vote toggle, with the state the caller should now render."""
    action: Literal['created', 'changed', 'removed']
    user_vote: int
    vote_count: int


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate_vote_type(vote_type) -> int:
    if isinstance(vote_type, bool) or vote_type not in VALID_VOTE_TYPES:
        raise ValidationError("vote_type must be 1 or -1.")
    return int(vote_type)


def _toggle_vote(user: User, vote_type: int, **target) -> VoteResult:
    """
    Toggle/upsert the caller's vote on one target (post_id=... or comment_id=...).

    ATOMICITY:
    Read-decide-write happens in one transaction; the inner savepoint keeps
    a lost insert race from poisoning it.
    """
    with transaction.atomic():
        existing = (
            Vote.objects
            .select_for_update()
            .filter(user=user, **target)
            .first()
        )

        if existing is not None and existing.vote_type == vote_type:
            existing.delete()
            action, user_vote = 'removed', 0
        elif existing is not None:
            Vote.objects.filter(pk=existing.pk).update(vote_type=vote_type)
            action, user_vote = 'changed', vote_type
        else:
            try:
                with transaction.atomic():
                    Vote.objects.create(user=user, vote_type=vote_type, **target)
                action = 'created'
            except IntegrityError:
                # A concurrent request inserted first - treat ours as the later upsert
                Vote.objects.filter(user=user, **target).update(vote_type=vote_type)
                action = 'changed'
            user_vote = vote_type

    return VoteResult(action=action, user_vote=user_vote, vote_count=get_vote_tally(**target))


def cast_vote(user: User, post_id: int, vote_type: int) -> VoteResult:
    """
    Cast, flip or retract the caller's vote on a post.

    +1 then +1  -> no row
    +1 then -1  -> one row with -1
    """
    require_member(get_authorization_context(user))
    vote_type = _validate_vote_type(vote_type)

    if not Post.objects.filter(id=post_id).exists():
        raise NotFound(f"Post {post_id} does not exist")

    result = _toggle_vote(user, vote_type, post_id=post_id)
    logger.info("Vote %s on post %s by %s (%+d)", result.action, post_id, user.pk, vote_type)
    return result


def cast_comment_vote(user: User, comment_id: int, vote_type: int) -> VoteResult:
    """Same toggle semantics as cast_vote, keyed on (comment, user)."""
    require_member(get_authorization_context(user))
    vote_type = _validate_vote_type(vote_type)

    if not Comment.objects.filter(id=comment_id).exists():
        raise NotFound(f"Comment {comment_id} does not exist")

    result = _toggle_vote(user, vote_type, comment_id=comment_id)
    logger.info("Vote %s on comment %s by %s (%+d)", result.action, comment_id, user.pk, vote_type)
    return result


def list_channels(user: User) -> list[Channel]:
    require_member(get_authorization_context(user))
    return list(Channel.objects.order_by('name'))


def create_channel(user: User, name: str, description: Optional[str] = None,
                   icon_url: Optional[str] = None) -> Channel:
    """
    Create a channel. Steward only.

    Uniqueness is the DB's job; a duplicate name comes back as Conflict.
    """
    require_steward(get_authorization_context(user))

    name = (name or '').strip()
    if not name:
        raise ValidationError("Community name is required.")

    try:
        with transaction.atomic():
            channel = Channel.objects.create(
                name=name,
                description=_blank_to_none(description),
                icon_url=_blank_to_none(icon_url),
                created_by=user,
            )
    except IntegrityError:
        raise Conflict(f'A community named "{name}" already exists.')

    logger.info("Channel #%s created by %s", channel.name, user.pk)
    return channel


def _clean_poll_options(options: Iterable[str]) -> list[str]:
    cleaned = []
    seen = set()
    for option in options:
        text = (option or '').strip()
        if text and text.lower() not in seen:
            seen.add(text.lower())
            cleaned.append(text)
    if len(cleaned) < 2:
        raise ValidationError("A poll needs at least two distinct options.")
    return cleaned


def create_post(user: User, channel_id: int, title: str,
                content: Optional[str] = None,
                flair: Optional[str] = None,
                image_url: Optional[str] = None,
                poll_options: Optional[Iterable[str]] = None) -> Post:
    """
    Create a post in a channel.

    Validation (empty title, bad poll) happens before any write.
    Post and poll options are written in one transaction, so the change
    notification only goes out once both exist.
    """
    require_member(get_authorization_context(user))

    title = (title or '').strip()
    if not title:
        raise ValidationError("Title is required.")

    options = _clean_poll_options(poll_options) if poll_options is not None else []

    channel = Channel.objects.filter(id=channel_id).first()
    if channel is None:
        raise NotFound(f"Community {channel_id} does not exist")

    with transaction.atomic():
        post = Post.objects.create(
            channel=channel,
            author=user,
            title=title,
            content=_blank_to_none(content),
            flair=_blank_to_none(flair),
            image_url=_blank_to_none(image_url),
            is_poll=bool(options),
        )
        if options:
            PollOption.objects.bulk_create([
                PollOption(post=post, option_text=text) for text in options
            ])

    logger.info("Post %s created in #%s by %s", post.id, channel.name, user.pk)
    return post


def set_post_pinned(user: User, post_id: int, pinned: bool) -> Post:
    """Pin or unpin a post. Steward only. Saves through the model so the feed is notified."""
    require_steward(get_authorization_context(user))

    try:
        post = Post.objects.get(id=post_id)
    except Post.DoesNotExist:
        raise NotFound(f"Post {post_id} does not exist")

    post.is_pinned = bool(pinned)
    post.save(update_fields=['is_pinned', 'updated_at'])

    logger.info("Post %s %s by %s", post_id, 'pinned' if pinned else 'unpinned', user.pk)
    return post


def create_comment(user: User, post_id: int, content: str,
                   parent_id: Optional[int] = None) -> Comment:
    """
    Comment on a post, optionally as a reply.

    The parent has to exist already and belong to the same post, which
    keeps every parent chain pointing strictly backwards: no cycles.
    """
    require_member(get_authorization_context(user))

    content = (content or '').strip()
    if not content:
        raise ValidationError("Comment cannot be empty.")

    if not Post.objects.filter(id=post_id).exists():
        raise NotFound(f"Post {post_id} does not exist")

    parent = None
    if parent_id is not None:
        parent = Comment.objects.filter(id=parent_id).first()
        if parent is None:
            raise NotFound(f"Comment {parent_id} does not exist")
        if parent.post_id != post_id:
            raise ValidationError("Parent comment must belong to the same post.")

    return Comment.objects.create(post_id=post_id, author=user, parent=parent, content=content)


def cast_poll_vote(user: User, option_id: int) -> PollOption:
    """
    Pick one option of a poll. One pick per user per poll.

    The PollVote unique constraint rejects a second pick; the counter is
    bumped with F() in the same transaction.
    """
    require_member(get_authorization_context(user))

    option = PollOption.objects.filter(id=option_id).first()
    if option is None:
        raise NotFound(f"Poll option {option_id} does not exist")

    try:
        with transaction.atomic():
            PollVote.objects.create(option=option, post_id=option.post_id, user=user)
            PollOption.objects.filter(id=option_id).update(votes=F('votes') + 1)
    except IntegrityError:
        raise Conflict("You have already voted in this poll.")

    option.refresh_from_db()
    logger.info("Poll vote on option %s by %s", option_id, user.pk)
    return option
