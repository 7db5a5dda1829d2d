"""
Community URL Configuration
"""
from django.urls import path
from .views import (
    ChannelListCreateView,
    FeedView,
    PostCreateView,
    PostVoteView,
    PostPinView,
    CommentCreateView,
    CommentVoteView,
    PollVoteView,
)

urlpatterns = [
    # Channels
    path('channels/', ChannelListCreateView.as_view(), name='channel-list'),

    # Feed
    path('feed/', FeedView.as_view(), name='feed'),

    # Posts
    path('posts/', PostCreateView.as_view(), name='post-create'),
    path('posts/<int:post_id>/vote/', PostVoteView.as_view(), name='post-vote'),
    path('posts/<int:post_id>/pin/', PostPinView.as_view(), name='post-pin'),
    path('posts/<int:post_id>/comments/', CommentCreateView.as_view(), name='comment-create'),

    # Comments
    path('comments/<int:comment_id>/vote/', CommentVoteView.as_view(), name='comment-vote'),

    # Polls
    path('poll-options/<int:option_id>/vote/', PollVoteView.as_view(), name='poll-vote'),
]
