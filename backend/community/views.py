"""
Community API views
===================

Views are thin: parse input, call the service, serialize the result.
Domain errors raised by services (AuthError, Conflict, NotFound, ...)
propagate to exceptions.custom_exception_handler.

REFRESH CONTRACT:
-----------------
Write endpoints return the fresh state of what they touched (a vote
returns the new tally and the caller's vote). Clients re-fetch
GET /api/feed/ after a write, or rely on the WebSocket feed which
recomputes on every post change.
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsApprovedMember, IsSteward

from .exceptions import ValidationError
from .queries import build_feed
from .serializers import (
    ChannelCreateSerializer,
    ChannelSerializer,
    CommentCreateSerializer,
    CommentSerializer,
    FeedItemSerializer,
    PinSerializer,
    PollOptionSerializer,
    PostCreateSerializer,
    PostSerializer,
    VoteActionSerializer,
    VoteResultSerializer,
)
from .services import (
    cast_comment_vote,
    cast_poll_vote,
    cast_vote,
    create_channel,
    create_comment,
    create_post,
    list_channels,
    set_post_pinned,
)


class ChannelListCreateView(APIView):
    """
    GET  /api/channels/   - approved members
    POST /api/channels/   - stewards only
    """

    def get_permissions(self):
        if self.request.method == 'POST':
            return [IsSteward()]
        return [IsApprovedMember()]

    def get(self, request):
        channels = list_channels(request.user)
        return Response(ChannelSerializer(channels, many=True).data)

    def post(self, request):
        serializer = ChannelCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        channel = create_channel(request.user, **serializer.validated_data)
        return Response(ChannelSerializer(channel).data, status=status.HTTP_201_CREATED)


class FeedView(APIView):
    """
    GET /api/feed/?channel=<id>

    Pinned first, newest first. Without ?channel= it is the cross-channel feed.
    No pagination: the whole feed is recomputed on every call.
    """
    permission_classes = [IsApprovedMember]

    def get(self, request):
        channel_id = request.query_params.get('channel')
        if channel_id in (None, ''):
            channel_id = None
        else:
            try:
                channel_id = int(channel_id)
            except ValueError:
                raise ValidationError("channel must be an integer.")

        feed = build_feed(request.user, channel_id)
        return Response(FeedItemSerializer(feed, many=True).data)


class PostCreateView(APIView):
    """
    POST /api/posts/

    Body:
    {
        "channel_id": 1,
        "title": "Welcome",
        "content": "...",          // optional
        "flair": "announcement",   // optional
        "image_url": "https://...",// optional
        "poll_options": ["A", "B"] // optional, makes it a poll
    }
    """
    permission_classes = [IsApprovedMember]

    def post(self, request):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = create_post(request.user, **serializer.validated_data)
        return Response(PostSerializer(post).data, status=status.HTTP_201_CREATED)


class PostVoteView(APIView):
    """
    POST /api/posts/<post_id>/vote/

    Body: { "vote_type": 1 | -1 }

    Same direction twice removes the vote; the other direction replaces it.
    """
    permission_classes = [IsApprovedMember]

    def post(self, request, post_id):
        serializer = VoteActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = cast_vote(request.user, post_id, serializer.validated_data['vote_type'])
        return Response(VoteResultSerializer(result).data)


class PostPinView(APIView):
    """
    POST /api/posts/<post_id>/pin/

    Body: { "is_pinned": true | false }
    """
    permission_classes = [IsSteward]

    def post(self, request, post_id):
        serializer = PinSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        post = set_post_pinned(request.user, post_id, serializer.validated_data['is_pinned'])
        return Response(PostSerializer(post).data)


class CommentCreateView(APIView):
    """
    POST /api/posts/<post_id>/comments/

    Body:
    {
        "content": "Comment text",
        "parent": 123  // optional, for replies
    }
    """
    permission_classes = [IsApprovedMember]

    def post(self, request, post_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = create_comment(
            request.user,
            post_id,
            serializer.validated_data['content'],
            parent_id=serializer.validated_data.get('parent')
        )
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)


class CommentVoteView(APIView):
    """POST /api/comments/<comment_id>/vote/"""
    permission_classes = [IsApprovedMember]

    def post(self, request, comment_id):
        serializer = VoteActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = cast_comment_vote(request.user, comment_id, serializer.validated_data['vote_type'])
        return Response(VoteResultSerializer(result).data)


class PollVoteView(APIView):
    """POST /api/poll-options/<option_id>/vote/"""
    permission_classes = [IsApprovedMember]

    def post(self, request, option_id):
        option = cast_poll_vote(request.user, option_id)
        return Response(PollOptionSerializer(option).data)
