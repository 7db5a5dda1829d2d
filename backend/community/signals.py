"""
Django Signals feeding the post change stream.

Every Post save/delete schedules a broadcast for AFTER the surrounding
transaction commits, so subscribers never recompute against rows they
cannot see yet (and a rolled-back write broadcasts nothing).

IMPORTANT: Signals do NOT fire on QuerySet.update() / bulk_create().
Code that must notify the feed (e.g. services.set_post_pinned) saves
through the model instance.
"""

from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import Post
from .realtime import DELETE, INSERT, UPDATE, broadcast_post_change


@receiver(post_save, sender=Post)
def post_saved(sender, instance, created, **kwargs):
    transaction.on_commit(partial(
        broadcast_post_change,
        INSERT if created else UPDATE,
        instance.id,
        instance.channel_id,
    ))


@receiver(post_delete, sender=Post)
def post_deleted(sender, instance, **kwargs):
    transaction.on_commit(partial(
        broadcast_post_change,
        DELETE,
        instance.id,
        instance.channel_id,
    ))
