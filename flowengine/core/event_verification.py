"""Signing and verification of workflow event deliveries."""

import hashlib
import hmac

EVENT_VERIFICATION_HEADER = "x-workflow-event-verification-hash"


def generate_event_verification_hash(workflow_id: str, secret: str) -> str:
    """HMAC-SHA256 of the workflow id, hex encoded, that senders attach to events."""
    return hmac.new(secret.encode("utf-8"), workflow_id.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_event_verification_hash(workflow_id: str, provided_hash: str, secret: str) -> bool:
    if not provided_hash:
        return False
    expected = generate_event_verification_hash(workflow_id, secret)
    return hmac.compare_digest(expected, provided_hash)
