"""
Inbound webhook authentication.

Wraps the Stripe SDK's signature check (HMAC-SHA256 over "<t>.<body>" with a
timestamp tolerance). Nothing downstream of this module sees a body whose
signature has not been checked.
"""
from typing import Optional, Union

import stripe

from stripe_sync.core.config import settings
from stripe_sync.core.errors import AuthenticationError


SIGNATURE_HEADER = "stripe-signature"


def verify_signature(
    body: Union[bytes, str],
    signature_header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
) -> None:
    """
    Verify a webhook delivery's signature and timestamp freshness.

    Args:
        body: Raw request body exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Signing secret (defaults to STRIPE_WEBHOOK_SECRET)
        tolerance: Allowed clock skew in seconds (defaults to settings)

    Raises:
        AuthenticationError: If the secret is missing, the header is missing,
            or the signature/timestamp check fails
    """
    signing_secret = secret or settings.STRIPE_WEBHOOK_SECRET
    if not signing_secret:
        raise AuthenticationError("STRIPE_WEBHOOK_SECRET not configured")
    if not signature_header:
        raise AuthenticationError("Missing stripe-signature header")

    if isinstance(body, bytes):
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticationError("Webhook body is not valid UTF-8")
    else:
        payload = body

    window = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, signing_secret, window)
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError(f"Invalid signature: {e}")
