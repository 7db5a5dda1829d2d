"""
Data Models for the Hostel Community
====================================

Design Philosophy:
------------------
1. Channels ("communities") are flat topic groups with a unique name
   - Only stewards create them; no edit/delete in scope

2. Every Post belongs to exactly one Channel; author never changes

3. Votes are signed (+1/-1) and live in ONE table for posts and comments
   - Exactly one target set (post XOR comment) - CHECK constraint
   - One row per (post, user) and per (comment, user) - UNIQUE constraints
   - Unique constraints are what make concurrent double-submits safe;
     the service layer only decides between toggle-off and upsert

4. No stored vote tallies on Post
   - vote_count = SUM(vote_type) computed on read
   - Trade-off: aggregate per feed build, but no drift between writers

5. Polls are the one denormalized counter (PollOption.votes)
   - Updated with F() expressions, guarded by the PollVote unique constraint

6. Comments use Adjacency List pattern (parent FK)
   - A parent must already exist when the reply is written, so the
     parent chain always points strictly backwards in time: no cycles

Indexes Strategy:
-----------------
- post.(is_pinned, created_at): the feed ordering
- post.(channel, is_pinned, created_at): channel-filtered feed
- vote.(post, user) unique: toggle lookup + tally scan by post
- comment.(post, created_at): comment counts and listing
"""

from django.db import models
from django.db.models import Q
from django.contrib.auth.models import User
from django.utils import timezone


class Channel(models.Model):
    """A named topic channel. The name doubles as the display slug."""
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, null=True)
    icon_url = models.URLField(max_length=500, blank=True, null=True)
    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='channels_created'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"#{self.name}"


class Post(models.Model):
    """
    A community post.

    is_pinned is set by stewards (services.set_post_pinned); pinned posts
    sort above everything else in the feed.
    """
    channel = models.ForeignKey(
        Channel,
        on_delete=models.CASCADE,
        related_name='posts'
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='posts',
        db_index=True
    )
    title = models.CharField(max_length=300)
    content = models.TextField(blank=True, null=True)
    # Opaque URL, no upload pipeline
    image_url = models.URLField(max_length=500, blank=True, null=True)
    # Free-text classification tag ("question", "meme", ...)
    flair = models.CharField(max_length=50, blank=True, null=True)
    is_pinned = models.BooleanField(default=False)
    is_poll = models.BooleanField(default=False)
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        # Pinned first, newest first, insertion order breaks ties
        ordering = ['-is_pinned', '-created_at', 'id']
        indexes = [
            models.Index(fields=['-is_pinned', '-created_at']),
            models.Index(fields=['channel', '-is_pinned', '-created_at']),
        ]

    def __str__(self):
        return f"{self.title[:50]} in #{self.channel_id}"


class PollOption(models.Model):
    """One choice of a poll post. votes is a denormalized counter."""
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='poll_options'
    )
    option_text = models.CharField(max_length=200)
    votes = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.option_text} ({self.votes})"


class PollVote(models.Model):
    """
    Who picked which option.

    post is copied from the option so the unique constraint can say
    "one pick per user per poll".
    """
    option = models.ForeignKey(
        PollOption,
        on_delete=models.CASCADE,
        related_name='poll_votes'
    )
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='poll_votes'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='poll_votes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'user'],
                name='unique_poll_vote_per_user_per_post'
            )
        ]


class Comment(models.Model):
    """
    Threaded comment using Adjacency List pattern.

    Only counted by the feed; thread rendering is the client's business.
    """
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments',
        db_index=True
    )
    author = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
        db_index=True
    )
    content = models.TextField()
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['post', 'created_at']),
        ]

    def __str__(self):
        return f"Comment {self.id} on post {self.post_id}"


class Vote(models.Model):
    """
    Signed vote on a post or a comment.

    CONCURRENCY STRATEGY:
    - UNIQUE (post, user) and UNIQUE (comment, user) at DB level
    - Two tabs submitting at once: one insert wins, the other becomes
      an update of the same row (last upsert wins)
    """

    class VoteType(models.IntegerChoices):
        DOWN = -1, 'Downvote'
        UP = 1, 'Upvote'

    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='votes'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='votes'
    )
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='votes'
    )
    vote_type = models.SmallIntegerField(choices=VoteType.choices)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'user'],
                name='unique_vote_per_user_per_post'
            ),
            models.UniqueConstraint(
                fields=['comment', 'user'],
                name='unique_vote_per_user_per_comment'
            ),
            models.CheckConstraint(
                condition=(
                    Q(post__isnull=False, comment__isnull=True) |
                    Q(post__isnull=True, comment__isnull=False)
                ),
                name='vote_targets_post_xor_comment'
            ),
            models.CheckConstraint(
                condition=Q(vote_type__in=[-1, 1]),
                name='vote_type_is_plus_or_minus_one'
            ),
        ]

    def __str__(self):
        target = f"post {self.post_id}" if self.post_id else f"comment {self.comment_id}"
        return f"{self.user_id} voted {self.vote_type:+d} on {target}"
