"""
Identity and roster API views.

AUTHENTICATION NOTE:
--------------------
Session authentication. sign-in sets the session cookie; every later
request re-derives the Authorization Context from it.
"""

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import identity, roster
from .authz import get_authorization_context
from .permissions import IsSteward
from .serializers import (
    ApprovalSerializer,
    IdentityCreateSerializer,
    IdentityUpdateSerializer,
    RosterEntrySerializer,
    SignInSerializer,
    SignUpSerializer,
)


class SignUpView(APIView):
    """
    POST /api/auth/sign-up/

    Self-service sign-up. The new account waits for steward approval.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = SignUpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = identity.sign_up(
            data['email'],
            data['password'],
            metadata={'full_name': data['full_name']}
        )
        return Response(
            get_authorization_context(user).as_dict(),
            status=status.HTTP_201_CREATED
        )


class SignInView(APIView):
    """
    POST /api/auth/sign-in/

    Body: { "email": "...", "password": "..." }
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = SignInSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = identity.sign_in(
            request._request,
            serializer.validated_data['email'],
            serializer.validated_data['password']
        )
        # Fresh derivation: the lazy request.authz was bound to the anonymous user
        return Response(get_authorization_context(user).as_dict())


class SignOutView(APIView):
    """POST /api/auth/sign-out/"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        identity.sign_out(request._request)
        return Response(status=status.HTTP_204_NO_CONTENT)


class AuthContextView(APIView):
    """
    GET /api/auth/context/

    Returns { signed_in, is_approved, role, user_id } for the current session.
    The frontend renders "sign in", "pending approval" or the community from this.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response(get_authorization_context(request.user).as_dict())


class IdentityListCreateView(APIView):
    """
    GET  /api/admin/identities/?q=<search>
    POST /api/admin/identities/

    Steward only.
    """
    permission_classes = [IsSteward]

    def get(self, request):
        entries = roster.list_identities(request.user, query=request.query_params.get('q'))
        return Response(RosterEntrySerializer(entries, many=True).data)

    def post(self, request):
        serializer = IdentityCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)

        email = data.pop('email')
        password = data.pop('password')
        role = data.pop('role')

        user = roster.create_identity(request.user, email, password, profile_fields=data, role=role)
        return Response(
            {'id': user.pk, 'email': user.email, 'role': role, 'is_approved': True},
            status=status.HTTP_201_CREATED
        )


class IdentityDetailView(APIView):
    """
    PATCH /api/admin/identities/<id>/

    200 when everything was saved, 207 when the profile was saved but the
    role update failed.
    """
    permission_classes = [IsSteward]

    def patch(self, request, identity_id):
        serializer = IdentityUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        role = data.pop('role', None)

        result = roster.update_identity(request.user, identity_id, profile_fields=data, role=role)
        body = {
            'profile': {'updated': result.profile_updated},
            'role': {'updated': result.role_updated, 'error': result.role_error},
        }
        return Response(
            body,
            status=status.HTTP_200_OK if result.complete else status.HTTP_207_MULTI_STATUS
        )


class IdentityApprovalView(APIView):
    """
    POST /api/admin/identities/<id>/approval/

    Body: { "approved": true | false }
    """
    permission_classes = [IsSteward]

    def post(self, request, identity_id):
        serializer = ApprovalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        approved = roster.set_approval(request.user, identity_id, serializer.validated_data['approved'])
        return Response({'id': identity_id, 'is_approved': approved})
