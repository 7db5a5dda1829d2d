"""
Identity data for the hostel portal.
====================================

The Django auth User is the identity itself (email doubles as username).
Everything the portal knows about a resident hangs off it:

1. Profile - one per identity, primary key IS the user id
   - is_approved is the approval gate for the community
   - created by a post_save receiver, never hard-deleted

2. UserRole - one per identity, closed enumeration {member, steward}
   - default member
   - only stewards change it
"""

from django.db import models
from django.contrib.auth.models import User


class Role(models.TextChoices):
    """
    Closed set of roles. Gated code branches on these members,
    never on raw strings.
    """
    MEMBER = 'member', 'Member'
    STEWARD = 'steward', 'Steward'


class Profile(models.Model):
    """
    Resident profile.

    The primary key is the OneToOne to User, so profile.pk is the session
    subject and can never be chosen by a client.
    """
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='profile'
    )
    email = models.EmailField()
    full_name = models.CharField(max_length=200)
    room_number = models.CharField(max_length=20, blank=True, null=True)
    phone = models.CharField(max_length=30, blank=True, null=True)
    batch = models.CharField(max_length=20, blank=True, null=True)
    branch = models.CharField(max_length=100, blank=True, null=True)
    avatar_url = models.URLField(max_length=500, blank=True, null=True)
    emergency_contact = models.CharField(max_length=200, blank=True, null=True)
    emergency_phone = models.CharField(max_length=30, blank=True, null=True)

    # Approval gate: false until a steward grants community access
    is_approved = models.BooleanField(default=False, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Fields a steward (or the owner) may edit through the roster
    EDITABLE_FIELDS = (
        'full_name',
        'room_number',
        'phone',
        'batch',
        'branch',
        'avatar_url',
        'emergency_contact',
        'emergency_phone',
    )

    class Meta:
        ordering = ['full_name']

    def __str__(self):
        return f"{self.full_name} <{self.email}>"


class UserRole(models.Model):
    """Exactly one role row per identity."""
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='role_assignment'
    )
    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.MEMBER
    )

    def __str__(self):
        return f"{self.user.email}: {self.role}"
