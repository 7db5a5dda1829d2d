"""
Hostel Portal URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Hostel Portal API Server',
        'version': '1.0',
        'endpoints': {
            'auth': '/api/auth/',
            'channels': '/api/channels/',
            'feed': '/api/feed/',
            'posts': '/api/posts/',
            'vote': '/api/posts/<id>/vote/',
            'roster': '/api/admin/identities/',
            'realtime': '/ws/community/feed/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('accounts.urls')),
    path('api/', include('community.urls')),
]
