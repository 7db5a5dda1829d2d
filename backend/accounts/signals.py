"""
Identity Store triggers.

Every new User gets a Profile and a member UserRole in the same save,
so downstream code can rely on exactly one of each.
"""

import logging

from django.contrib.auth.models import User
from django.contrib.auth.signals import user_logged_in, user_logged_out
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import Profile, Role, UserRole

logger = logging.getLogger(__name__)


@receiver(post_save, sender=User)
def create_identity_rows(sender, instance, created, **kwargs):
    """
    Create the profile and role rows for a new identity.

    full_name comes from the sign-up metadata stashed on the instance by
    identity.sign_up(); otherwise we fall back to the auth name fields.
    """
    if not created:
        return

    metadata = getattr(instance, '_signup_metadata', None) or {}
    full_name = (
        metadata.get('full_name')
        or instance.get_full_name()
        or instance.email
        or instance.username
    )
    Profile.objects.get_or_create(
        user=instance,
        defaults={'email': instance.email, 'full_name': full_name}
    )
    UserRole.objects.get_or_create(user=instance, defaults={'role': Role.MEMBER})


@receiver(user_logged_in)
def log_sign_in(sender, request, user, **kwargs):
    logger.info("Identity %s signed in", user.pk)


@receiver(user_logged_out)
def log_sign_out(sender, request, user, **kwargs):
    if user is not None:
        logger.info("Identity %s signed out", user.pk)
