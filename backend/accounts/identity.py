"""
Identity Store
==============

Thin layer over django.contrib.auth that speaks the portal's error taxonomy:

    sign_up(email, password, metadata) -> User | Conflict | ValidationError
    sign_in(request, email, password)  -> User | AuthError
    sign_out(request)

The email, lower-cased, is both the login and the username. Profile and
role rows are created by the post_save receiver in signals.py.
"""

import logging
from typing import Optional

from django.contrib.auth import authenticate, login, logout, password_validation
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from community.exceptions import AuthError, Conflict, ValidationError

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or '').strip().lower()


def sign_up(email: str, password: str, metadata: Optional[dict] = None) -> User:
    """
    Create a new identity.

    New identities are NOT approved; a steward has to grant access
    (or create them through the roster, which pre-approves).
    """
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required.")

    if User.objects.filter(username=email).exists():
        raise Conflict("A user with this email address has already been registered.")

    user = User(username=email, email=email)
    try:
        password_validation.validate_password(password, user)
    except DjangoValidationError as exc:
        raise ValidationError(" ".join(exc.messages))
    user.set_password(password)
    # Picked up by the post_save receiver that creates the profile
    user._signup_metadata = dict(metadata or {})

    try:
        with transaction.atomic():
            user.save()
    except IntegrityError:
        # Lost a race with a concurrent sign-up for the same email
        raise Conflict("A user with this email address has already been registered.")

    logger.info("Identity %s signed up", user.pk)
    return user


def sign_in(request, email: str, password: str) -> User:
    user = authenticate(request, username=normalize_email(email), password=password)
    if user is None:
        raise AuthError("Invalid login credentials")
    login(request, user)
    return user


def sign_out(request) -> None:
    logout(request)
