"""
Serializers for identity and roster endpoints.

Input serializers only check shape; the business rules (required fields,
role values, duplicates) live in identity.py and roster.py.
"""

from rest_framework import serializers

from .models import Role


class SignUpSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    full_name = serializers.CharField(max_length=200)


class SignInSerializer(serializers.Serializer):
    email = serializers.CharField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)


class ProfileFieldsSerializer(serializers.Serializer):
    """Editable profile fields. Every field is optional so PATCH can send a subset."""
    full_name = serializers.CharField(max_length=200, required=False)
    room_number = serializers.CharField(max_length=20, required=False, allow_blank=True, allow_null=True)
    phone = serializers.CharField(max_length=30, required=False, allow_blank=True, allow_null=True)
    batch = serializers.CharField(max_length=20, required=False, allow_blank=True, allow_null=True)
    branch = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)
    avatar_url = serializers.URLField(max_length=500, required=False, allow_blank=True, allow_null=True)
    emergency_contact = serializers.CharField(max_length=200, required=False, allow_blank=True, allow_null=True)
    emergency_phone = serializers.CharField(max_length=30, required=False, allow_blank=True, allow_null=True)


class IdentityCreateSerializer(ProfileFieldsSerializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)
    full_name = serializers.CharField(max_length=200)
    role = serializers.ChoiceField(choices=Role.choices, default=Role.MEMBER)


class IdentityUpdateSerializer(ProfileFieldsSerializer):
    role = serializers.ChoiceField(choices=Role.choices, required=False)


class ApprovalSerializer(serializers.Serializer):
    approved = serializers.BooleanField()


class RosterEntrySerializer(serializers.Serializer):
    """Serializer for roster rows produced by roster.list_identities()."""
    id = serializers.IntegerField()
    email = serializers.EmailField()
    full_name = serializers.CharField()
    room_number = serializers.CharField(allow_null=True)
    phone = serializers.CharField(allow_null=True)
    batch = serializers.CharField(allow_null=True)
    branch = serializers.CharField(allow_null=True)
    avatar_url = serializers.CharField(allow_null=True)
    emergency_contact = serializers.CharField(allow_null=True)
    emergency_phone = serializers.CharField(allow_null=True)
    is_approved = serializers.BooleanField()
    role = serializers.CharField()
