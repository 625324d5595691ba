"""Mandate lifecycle states and status mapping"""

from enum import Enum

# Gateway registration statuses that mean the bank accepted the mandate
ACCEPTED_REGISTRATION_STATUSES = frozenset({"ACTIVE", "SUCCESS", "REGISTERED", "APPROVED", "ACCEPTED"})


class MandateState(str, Enum):
    """Steps of the create -> webhook pipeline, in order"""

    INITIATED = "INITIATED"
    MERCHANT_USER_RESOLVED = "MERCHANT_USER_RESOLVED"
    SLAB_RESOLVED = "SLAB_RESOLVED"
    TRANSACTION_RECORDED = "TRANSACTION_RECORDED"
    GATEWAY_REDIRECT_ISSUED = "GATEWAY_REDIRECT_ISSUED"
    ENQUIRY_FETCHED = "ENQUIRY_FETCHED"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


def reconciled_status(registration_status: str | None) -> MandateState:
    """Collapse the gateway registration status to ACTIVE or FAILED"""
    if registration_status and registration_status.strip().upper() in ACCEPTED_REGISTRATION_STATUSES:
        return MandateState.ACTIVE
    return MandateState.FAILED
