# ============================================================================
# SCOPE: APPLICATION LAYER (Messaging)
# Description: Webhook signature verification with an explicit posture.
# ============================================================================
"""Webhook Signature Verifier.

HMAC-SHA256 of the raw request body, compared against the
`X-Hub-Signature-256: sha256=<hex>` header.

The posture is explicit rather than a silent fallback:
- ENFORCED: a real secret is configured; bad or missing signatures are rejected.
- PLACEHOLDER: the secret is the sample value; verification is skipped with a warning.
- OPEN: no secret and signatures not required; payloads accepted with a warning.
- MISCONFIGURED: signatures required but no secret; every payload is rejected.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

PLACEHOLDER_SECRET = "your_webhook_secret"
SIGNATURE_PREFIX = "sha256="


class SignatureMode(str, Enum):
    ENFORCED = "enforced"
    PLACEHOLDER = "placeholder"
    OPEN = "open"
    MISCONFIGURED = "misconfigured"


@dataclass(frozen=True)
class SignatureCheck:
    """Verification outcome."""

    accepted: bool
    mode: SignatureMode
    reason: str | None = None


def compute_signature(secret: str, raw_body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class SignatureVerifier:
    """Verifies webhook payloads according to the configured mode."""

    def __init__(self, secret: str | None, require_signature: bool = False) -> None:
        self._secret = secret or ""
        if self._secret and self._secret != PLACEHOLDER_SECRET:
            self.mode = SignatureMode.ENFORCED
        elif self._secret == PLACEHOLDER_SECRET:
            self.mode = SignatureMode.PLACEHOLDER
        elif require_signature:
            self.mode = SignatureMode.MISCONFIGURED
        else:
            self.mode = SignatureMode.OPEN
        logger.info(f"Webhook signature mode: {self.mode.value}")

    def verify(self, raw_body: bytes, signature_header: str | None) -> SignatureCheck:
        if self.mode is SignatureMode.PLACEHOLDER:
            logger.warning("Webhook secret is the placeholder value; skipping signature verification")
            return SignatureCheck(accepted=True, mode=self.mode, reason="placeholder_secret")

        if self.mode is SignatureMode.OPEN:
            logger.warning("No webhook secret configured; accepting unsigned payload")
            return SignatureCheck(accepted=True, mode=self.mode, reason="unsigned_accepted")

        if self.mode is SignatureMode.MISCONFIGURED:
            logger.error("Webhook signature required but no secret configured")
            return SignatureCheck(accepted=False, mode=self.mode, reason="secret_not_configured")

        if not signature_header:
            logger.warning("Missing X-Hub-Signature-256 header")
            return SignatureCheck(accepted=False, mode=self.mode, reason="missing_signature")

        expected = compute_signature(self._secret, raw_body)
        if not hmac.compare_digest(expected, signature_header.strip()):
            logger.warning("Webhook signature verification failed")
            return SignatureCheck(accepted=False, mode=self.mode, reason="invalid_signature")

        return SignatureCheck(accepted=True, mode=self.mode)
