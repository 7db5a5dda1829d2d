"""
Authorization Context
=====================

Single source of truth for "who is asking": (signed in?, approved?, role).

Every gated operation in the portal asks this module. Nothing else
re-implements the approval or role check.

DERIVATION:
-----------
- Anonymous user       -> signed_in=False, nothing else matters
- Missing profile row  -> treated as not approved
- Missing role row     -> treated as member (never an error)

The context is derived per request (see middleware.py) and per WebSocket
connection, so sign-in, sign-out and approval changes take effect on the
next request without any session invalidation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from community.exceptions import AuthError, NotSignedIn

from .models import Profile, Role, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationContext:
    signed_in: bool
    is_approved: bool
    role: Role
    user_id: Optional[int] = None

    @property
    def is_steward(self) -> bool:
        if self.role is Role.STEWARD:
            return True
        if self.role is Role.MEMBER:
            return False
        raise AssertionError(f"Unhandled role: {self.role!r}")

    @property
    def can_use_community(self) -> bool:
        return self.signed_in and self.is_approved

    def as_dict(self) -> dict:
        return {
            'signed_in': self.signed_in,
            'is_approved': self.is_approved,
            'role': self.role.value,
            'user_id': self.user_id,
        }


ANONYMOUS = AuthorizationContext(signed_in=False, is_approved=False, role=Role.MEMBER)


def _resolve_role(user_id: int) -> Role:
    value = (
        UserRole.objects
        .filter(user_id=user_id)
        .values_list('role', flat=True)
        .first()
    )
    if value is None:
        return Role.MEMBER
    try:
        return Role(value)
    except ValueError:
        logger.warning("Identity %s has unknown role %r, treating as member", user_id, value)
        return Role.MEMBER


def get_authorization_context(user) -> AuthorizationContext:
    """
    Derive the context for a (possibly anonymous) user.

    Query: 2 (profile approval flag, role row)
    """
    if user is None or not user.is_authenticated:
        return ANONYMOUS

    is_approved = (
        Profile.objects
        .filter(user_id=user.pk)
        .values_list('is_approved', flat=True)
        .first()
    )
    return AuthorizationContext(
        signed_in=True,
        is_approved=bool(is_approved),
        role=_resolve_role(user.pk),
        user_id=user.pk,
    )


def require_member(context: AuthorizationContext) -> AuthorizationContext:
    """Community gate: signed in AND approved. Role does not matter."""
    if not context.signed_in:
        raise NotSignedIn()
    if not context.is_approved:
        raise AuthError("Your account is pending approval by the hostel council.")
    return context


def require_steward(context: AuthorizationContext) -> AuthorizationContext:
    """Steward gate. Approval does not matter, the role does."""
    if not context.signed_in:
        raise NotSignedIn()
    if not context.is_steward:
        raise AuthError("Only stewards can perform this action.")
    return context
