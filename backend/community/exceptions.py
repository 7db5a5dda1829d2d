"""
Error taxonomy and the DRF exception handler.

Services raise the domain errors below; views let them propagate and the
handler turns them into a consistent {"error": ...} response.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import DatabaseError, IntegrityError
import logging

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """Base class for every error a portal operation surfaces to its caller."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class AuthError(PortalError):
    """You do not have access to this action."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'auth_error'


class NotSignedIn(AuthError):
    """Please sign in to continue."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'not_signed_in'


class Conflict(PortalError):
    """This entry already exists."""
    status_code = status.HTTP_409_CONFLICT
    code = 'conflict'


class NotFound(PortalError):
    """The requested item does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    code = 'not_found'


class ValidationError(PortalError):
    """The submitted data is invalid."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'validation_error'


class TransientError(PortalError):
    """The service is temporarily unavailable. Please try again."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = 'transient_error'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Renders domain errors with their own status and code
    2. Converts Django database exceptions to DRF responses
    3. Provides consistent error format
    4. Logs everything unexpected
    """
    if isinstance(exc, PortalError):
        if isinstance(exc, TransientError):
            logger.error("TransientError: %s", exc.message)
        return Response(
            {'error': exc.message, 'code': exc.code},
            status=exc.status_code
        )

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    # Handle exceptions that DRF doesn't handle
    if isinstance(exc, IntegrityError):
        logger.warning("IntegrityError: %s", exc)
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.', 'code': Conflict.code},
            status=status.HTTP_409_CONFLICT
        )

    if isinstance(exc, DatabaseError):
        logger.error("DatabaseError: %s", exc)
        return Response(
            {'error': TransientError.__doc__, 'code': TransientError.code},
            status=status.HTTP_503_SERVICE_UNAVAILABLE
        )

    logger.exception("Unhandled exception: %s", exc)

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
