"""
DRF Serializers for the community API
=====================================

Input serializers validate shape only (types, lengths). Business rules -
blank titles, existing channels, poll option counts, gating - are enforced
by services.py so HTTP and non-HTTP callers get identical behaviour.

Output serializers render model instances and the dicts produced by the
feed aggregator (queries.build_feed).
"""

from rest_framework import serializers

from .models import Channel, Comment, PollOption, Post


class ChannelSerializer(serializers.ModelSerializer):

    class Meta:
        model = Channel
        fields = ['id', 'name', 'description', 'icon_url', 'created_by', 'created_at']
        read_only_fields = fields


class ChannelCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    icon_url = serializers.URLField(max_length=500, required=False, allow_blank=True, allow_null=True)


class PostCreateSerializer(serializers.Serializer):
    """
    Author is set from request.user in the view, not from input.
    This prevents users from creating posts as other users.
    """
    channel_id = serializers.IntegerField(min_value=1)
    # Blank allowed here so the service can report "Title is required."
    title = serializers.CharField(max_length=300, allow_blank=True, trim_whitespace=False)
    content = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    flair = serializers.CharField(max_length=50, required=False, allow_blank=True, allow_null=True)
    image_url = serializers.URLField(max_length=500, required=False, allow_blank=True, allow_null=True)
    poll_options = serializers.ListField(
        child=serializers.CharField(max_length=200, allow_blank=True),
        required=False,
        allow_null=True,
    )


class PollOptionSerializer(serializers.ModelSerializer):

    class Meta:
        model = PollOption
        fields = ['id', 'option_text', 'votes']
        read_only_fields = fields


class PostSerializer(serializers.ModelSerializer):
    """Plain post as stored, returned by write endpoints."""
    poll_options = PollOptionSerializer(many=True, read_only=True)

    class Meta:
        model = Post
        fields = [
            'id',
            'channel',
            'author',
            'title',
            'content',
            'image_url',
            'flair',
            'is_pinned',
            'is_poll',
            'poll_options',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class CommentCreateSerializer(serializers.Serializer):
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    parent = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class CommentSerializer(serializers.ModelSerializer):

    class Meta:
        model = Comment
        fields = ['id', 'post', 'parent', 'author', 'content', 'created_at']
        read_only_fields = fields


class VoteActionSerializer(serializers.Serializer):
    vote_type = serializers.ChoiceField(choices=[1, -1])


class PinSerializer(serializers.Serializer):
    is_pinned = serializers.BooleanField()


class AuthorDisplaySerializer(serializers.Serializer):
    full_name = serializers.CharField()
    avatar_url = serializers.CharField(allow_null=True)


class FeedPollOptionSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    option_text = serializers.CharField()
    votes = serializers.IntegerField()


class FeedItemSerializer(serializers.Serializer):
    """Serializer for the derived feed items. Never used for input."""
    id = serializers.IntegerField()
    title = serializers.CharField()
    content = serializers.CharField(allow_null=True)
    image_url = serializers.CharField(allow_null=True)
    flair = serializers.CharField(allow_null=True)
    is_pinned = serializers.BooleanField()
    is_poll = serializers.BooleanField()
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()
    author_id = serializers.IntegerField()
    channel_id = serializers.IntegerField()
    channel_name = serializers.CharField()
    author = AuthorDisplaySerializer()
    vote_count = serializers.IntegerField()
    comment_count = serializers.IntegerField()
    user_vote = serializers.IntegerField()
    poll_options = FeedPollOptionSerializer(many=True)


class VoteResultSerializer(serializers.Serializer):
    action = serializers.CharField()
    user_vote = serializers.IntegerField()
    vote_count = serializers.IntegerField()
