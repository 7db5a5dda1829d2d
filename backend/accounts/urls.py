"""
Accounts URL Configuration
"""
from django.urls import path
from .views import (
    SignUpView,
    SignInView,
    SignOutView,
    AuthContextView,
    IdentityListCreateView,
    IdentityDetailView,
    IdentityApprovalView,
)

urlpatterns = [
    # Identity Store
    path('auth/sign-up/', SignUpView.as_view(), name='sign-up'),
    path('auth/sign-in/', SignInView.as_view(), name='sign-in'),
    path('auth/sign-out/', SignOutView.as_view(), name='sign-out'),
    path('auth/context/', AuthContextView.as_view(), name='auth-context'),

    # Roster (steward only)
    path('admin/identities/', IdentityListCreateView.as_view(), name='identity-list'),
    path('admin/identities/<int:identity_id>/', IdentityDetailView.as_view(), name='identity-detail'),
    path('admin/identities/<int:identity_id>/approval/', IdentityApprovalView.as_view(), name='identity-approval'),
]
