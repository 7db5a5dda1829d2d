"""
Django Admin Configuration for Identity Models
"""
from django.contrib import admin
from .models import Profile, UserRole


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['full_name', 'email', 'room_number', 'batch', 'is_approved', 'created_at']
    list_filter = ['is_approved', 'batch']
    search_fields = ['full_name', 'email', 'room_number']
    readonly_fields = ['user', 'created_at', 'updated_at']


@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ['user', 'role']
    list_filter = ['role']
    search_fields = ['user__email']
