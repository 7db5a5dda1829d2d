from django.utils.functional import SimpleLazyObject

from .authz import get_authorization_context


class AuthorizationContextMiddleware:
    """
    Attach request.authz, derived from request.user on first access.

    Lazy so anonymous traffic to public endpoints costs no queries.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.authz = SimpleLazyObject(lambda: get_authorization_context(request.user))
        return self.get_response(request)
