"""
Django Admin Configuration for Community Models
"""
from django.contrib import admin
from .models import Channel, Post, PollOption, Comment, Vote


@admin.register(Channel)
class ChannelAdmin(admin.ModelAdmin):
    list_display = ['name', 'created_by', 'created_at']
    search_fields = ['name', 'description']
    readonly_fields = ['created_by', 'created_at']


class PollOptionInline(admin.TabularInline):
    model = PollOption
    extra = 0
    readonly_fields = ['votes']


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['title', 'channel', 'author', 'flair', 'is_pinned', 'is_poll', 'created_at']
    list_filter = ['channel', 'is_pinned', 'is_poll', 'created_at']
    search_fields = ['title', 'content', 'author__email']
    readonly_fields = ['author', 'created_at', 'updated_at']
    inlines = [PollOptionInline]


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'parent', 'created_at']
    list_filter = ['created_at']
    search_fields = ['content', 'author__email']
    readonly_fields = ['created_at']


@admin.register(Vote)
class VoteAdmin(admin.ModelAdmin):
    list_display = ['user', 'post', 'comment', 'vote_type', 'created_at']
    list_filter = ['vote_type', 'created_at']
    search_fields = ['user__email']

    def has_change_permission(self, request, obj=None):
        # Votes change only through the toggle service
        return False
