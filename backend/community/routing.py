from django.urls import path

from . import consumers

websocket_urlpatterns = [
    path('ws/community/feed/', consumers.FeedConsumer.as_asgi()),
]
