"""
DRF permission classes backed by the Authorization Context.

These only decide what the HTTP layer lets through. The services run the
same guards again, so a missing permission class can never open a hole.
"""
from rest_framework import permissions

from .authz import get_authorization_context, require_member, require_steward


def request_context(request):
    context = getattr(request, 'authz', None)
    if context is None:
        context = get_authorization_context(request.user)
    return context


class IsApprovedMember(permissions.BasePermission):
    """Signed in and approved."""

    def has_permission(self, request, view):
        # Raise instead of returning False so the caller sees *why*
        require_member(request_context(request))
        return True


class IsSteward(permissions.BasePermission):
    """Signed in with the steward role."""

    def has_permission(self, request, view):
        require_steward(request_context(request))
        return True
