"""
Payment gateway verification.

The verifier is configured by dotted path in settings.PAYMENTS['GATEWAY_VERIFIER']
and called with the payment details a client submitted when completing an
Online payment. It returns True when the gateway confirms the payment.
"""
import logging

from django.conf import settings
from django.utils.module_loading import import_string

from core.exceptions import GatewayError

logger = logging.getLogger(__name__)


def trust_verified_assertion(details: dict) -> bool:
    """Accept the client's own verification result. Development default."""
    return details.get('verification_status') == 'Verified'


def get_verifier():
    return import_string(settings.PAYMENTS['GATEWAY_VERIFIER'])


def verify_payment(details: dict) -> None:
    """
    Raises:
        GatewayError: the gateway refused the payment or could not be reached
    """
    verifier = get_verifier()
    try:
        verified = verifier(details)
    except GatewayError:
        raise
    except Exception as e:
        logger.error(f"Payment verification failed for gateway order {details.get('gateway_order_id')}: {e}")
        raise GatewayError("Payment verification is unavailable; try again")

    if not verified:
        logger.warning(f"Payment {details.get('gateway_payment_id')} was not verified by the gateway")
        raise GatewayError("Payment could not be verified")
