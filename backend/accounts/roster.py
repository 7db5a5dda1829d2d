"""
Admin Roster Manager
====================

Steward-only management of identities: listing, creation, profile/role
edits and the approval gate.

CONSISTENCY NOTES:
------------------
create_identity() is TWO independent writes:
    1. Identity Store: create the User (+ profile/role rows via signal)
    2. Profile patch: extended fields, is_approved=True, steward role

They are deliberately not wrapped in one transaction: phase 1 is the
Identity Store's own operation. If phase 2 fails the identity exists but
looks unapproved. We log it at ERROR with the identity id and raise
TransientError; reconciliation is manual (re-run update_identity and
set_approval for that id).

update_identity() writes the profile and then the role. A role failure
after a successful profile write is reported separately in
RosterUpdateResult.role_error so the caller can tell the two apart.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, TypedDict

from django.contrib.auth.models import User
from django.db import DatabaseError
from django.db.models import Q
from django.utils import timezone

from community.exceptions import NotFound, TransientError, ValidationError

from . import identity
from .authz import get_authorization_context, require_steward
from .models import Profile, Role, UserRole

logger = logging.getLogger(__name__)


class RosterEntry(TypedDict):
    id: int
    email: str
    full_name: str
    room_number: Optional[str]
    phone: Optional[str]
    batch: Optional[str]
    branch: Optional[str]
    avatar_url: Optional[str]
    emergency_contact: Optional[str]
    emergency_phone: Optional[str]
    is_approved: bool
    role: str


@dataclass
class RosterUpdateResult:
    """Outcome of update_identity(). The profile and role surfaces are independent."""
    profile_updated: bool
    role_updated: bool = False
    role_error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.profile_updated and self.role_error is None


def _require_steward(actor) -> None:
    require_steward(get_authorization_context(actor))


def _coerce_role(value) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(f"Unknown role: {value!r}")


def _clean_profile_fields(fields: Optional[dict]) -> dict:
    """Keep editable fields only; blank strings become NULL."""
    cleaned = {}
    for name, value in (fields or {}).items():
        if name not in Profile.EDITABLE_FIELDS:
            continue
        if isinstance(value, str):
            value = value.strip()
        if name == 'full_name':
            if not value:
                raise ValidationError("Full name cannot be empty.")
            cleaned[name] = value
        else:
            cleaned[name] = value or None
    return cleaned


def _get_profile(identity_id: int) -> Profile:
    try:
        return Profile.objects.get(user_id=identity_id)
    except Profile.DoesNotExist:
        raise NotFound(f"Identity {identity_id} does not exist")


def list_identities(actor, query: Optional[str] = None) -> List[RosterEntry]:
    """
    All profiles with their role, ordered by full name.

    Query: 2 (profiles, then roles for that id set)
    Absent role rows show up as member.
    """
    _require_steward(actor)

    profiles = Profile.objects.order_by('full_name', 'user_id')
    if query and query.strip():
        term = query.strip()
        profiles = profiles.filter(
            Q(full_name__icontains=term) |
            Q(email__icontains=term) |
            Q(room_number__icontains=term)
        )
    profiles = list(profiles)

    roles = dict(
        UserRole.objects
        .filter(user_id__in=[p.user_id for p in profiles])
        .values_list('user_id', 'role')
    )

    return [
        RosterEntry(
            id=profile.user_id,
            email=profile.email,
            full_name=profile.full_name,
            room_number=profile.room_number,
            phone=profile.phone,
            batch=profile.batch,
            branch=profile.branch,
            avatar_url=profile.avatar_url,
            emergency_contact=profile.emergency_contact,
            emergency_phone=profile.emergency_phone,
            is_approved=profile.is_approved,
            role=roles.get(profile.user_id, Role.MEMBER.value),
        )
        for profile in profiles
    ]


def create_identity(actor, email: str, password: str,
                    profile_fields: Optional[dict] = None,
                    role=Role.MEMBER) -> User:
    """
    Create a pre-approved identity on behalf of a steward.

    Duplicate email -> Conflict from phase 1, and no profile row exists.
    """
    _require_steward(actor)

    role = _coerce_role(role)
    fields = _clean_profile_fields(profile_fields)
    full_name = fields.get('full_name')
    if not email or not password or not full_name:
        raise ValidationError("Please fill in all required fields")

    # Phase 1: Identity Store
    user = identity.sign_up(email, password, metadata={'full_name': full_name})

    # Phase 2: profile patch + role
    try:
        Profile.objects.filter(user_id=user.pk).update(
            is_approved=True,
            updated_at=timezone.now(),
            **fields
        )
        if role is Role.STEWARD:
            UserRole.objects.update_or_create(user_id=user.pk, defaults={'role': Role.STEWARD})
    except DatabaseError as exc:
        logger.error(
            "Identity %s (%s) created but profile setup failed, needs manual reconciliation: %s",
            user.pk, user.email, exc
        )
        raise TransientError(
            f"Account {user.email} was created but its profile could not be completed "
            f"(identity {user.pk}). Update it from the roster to finish setup."
        )

    logger.info("Steward %s created identity %s as %s", actor.pk, user.pk, role.value)
    return user


def update_identity(actor, identity_id: int,
                    profile_fields: Optional[dict] = None,
                    role=None) -> RosterUpdateResult:
    """
    Update profile fields, then (optionally) the role.

    Profile failure raises. Role failure is returned in the result.
    """
    _require_steward(actor)

    fields = _clean_profile_fields(profile_fields)
    new_role = _coerce_role(role) if role is not None else None
    _get_profile(identity_id)

    if fields:
        try:
            Profile.objects.filter(user_id=identity_id).update(updated_at=timezone.now(), **fields)
        except DatabaseError as exc:
            logger.error("Profile update for identity %s failed: %s", identity_id, exc)
            raise TransientError("Profile update failed. Please try again.")

    result = RosterUpdateResult(profile_updated=True)

    if new_role is not None:
        try:
            UserRole.objects.update_or_create(user_id=identity_id, defaults={'role': new_role})
            result.role_updated = True
        except DatabaseError as exc:
            logger.error("Role update for identity %s failed after profile update: %s", identity_id, exc)
            result.role_error = "Profile saved, but the role could not be updated."

    logger.info("Steward %s updated identity %s", actor.pk, identity_id)
    return result


def set_approval(actor, identity_id: int, approved: bool) -> bool:
    """
    Grant or revoke community access.

    Takes effect on the target's next request; sessions are left alone.
    """
    _require_steward(actor)

    updated = Profile.objects.filter(user_id=identity_id).update(
        is_approved=bool(approved),
        updated_at=timezone.now()
    )
    if not updated:
        raise NotFound(f"Identity {identity_id} does not exist")

    logger.info(
        "Steward %s %s community access for identity %s",
        actor.pk, 'granted' if approved else 'revoked', identity_id
    )
    return bool(approved)
