"""
Domain errors shared by the order and payment services.

Every error carries a stable `code` and the HTTP status it maps to, so views
and the DRF exception handler never need to inspect messages.
"""
import logging

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class OrderingError(Exception):
    """Base class for errors reported to the caller as-is."""
    code = 'ordering_error'
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = ''):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ValidationError(OrderingError):
    """Malformed or missing input."""
    code = 'validation_error'
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(OrderingError):
    """Order, agent or transaction does not exist."""
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(OrderingError):
    """Role or ownership mismatch."""
    code = 'not_authorized'
    status_code = status.HTTP_403_FORBIDDEN


class StateError(OrderingError):
    """Illegal transition or unmet precondition."""
    code = 'invalid_state'
    status_code = status.HTTP_409_CONFLICT


class GatewayError(OrderingError):
    """Upstream payment or notification failure."""
    code = 'gateway_error'
    status_code = status.HTTP_502_BAD_GATEWAY


def error_payload(exc: OrderingError) -> dict:
    return {'error': exc.code, 'detail': exc.message}


def api_exception_handler(exc, context):
    """
    DRF exception handler.

    - OrderingError subclasses: stable error code + message
    - DRF/Django HTTP errors: default DRF handling, validation and
      throttling errors wrapped in the same error/detail shape
    - Anything else: logged with traceback, generic 500 without internals
    """
    if isinstance(exc, OrderingError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        else:
            logger.warning(f"{exc.code}: {exc.message}")
        return Response(error_payload(exc), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        if isinstance(exc, exceptions.ValidationError):
            response.data = {'error': ValidationError.code, 'detail': response.data}
        elif isinstance(exc, exceptions.Throttled):
            response.data = {'error': 'rate_limited', 'detail': str(exc.detail), 'retry_after': exc.wait}
        return response

    view = context.get('view')
    logger.exception(f"Unexpected error in {view.__class__.__name__ if view else 'view'}: {exc}")
    return Response(
        {'error': 'server_error', 'detail': 'An unexpected error occurred'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
