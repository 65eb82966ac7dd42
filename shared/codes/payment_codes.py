"""
Payment specific codes and provider status mapping.

Each gateway reports outcomes with its own native status codes. The tables
below are the single place where those codes are translated into internal
payment states (the values of ``domain.payment.entity.PaymentState``).

A code mapped to ``None`` is known but carries no transition (pending or
informational). A code missing from its table is unknown; callers treat it
as "no transition" and log it.
"""
from __future__ import annotations

from enum import IntEnum
from typing import Optional


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RESPONSE_ERROR = 60005

    # Integrity errors (61xxx)
    CANONICALIZATION_ERROR = 61000
    AMOUNT_MISMATCH = 61001
    TRANSITION_REJECTED = 61002


# Internal state names, kept as plain strings so this module stays below the domain layer.
AUTHORIZED = "authorized"
CAPTURED = "captured"
REFUNDED = "refunded"
CANCELLED = "cancelled"
ERROR = "error"


PROVIDER_STATUS_TO_STATE: dict[str, dict[str, Optional[str]]] = {
    "ogone": {
        # STATUS attribute of callbacks and ncresponse documents
        "0": ERROR,        # invalid or incomplete
        "1": CANCELLED,    # cancelled by customer
        "2": ERROR,        # authorisation refused
        "5": AUTHORIZED,
        "51": AUTHORIZED,  # authorisation waiting
        "52": None,        # authorisation not known
        "6": CANCELLED,    # authorised and cancelled
        "61": CANCELLED,   # deletion waiting
        "7": REFUNDED,     # payment deleted
        "71": REFUNDED,
        "8": REFUNDED,
        "81": REFUNDED,    # refund pending
        "9": CAPTURED,
        "91": CAPTURED,    # payment processing
        "92": None,        # payment uncertain
        "93": ERROR,       # payment refused
    },
    "buckaroo": {
        "190": CAPTURED,
        "490": ERROR,
        "491": ERROR,
        "492": ERROR,
        "690": ERROR,
        "790": None,  # pending input
        "791": None,  # pending processing
        "792": None,  # awaiting consumer transfer
        "793": None,  # on hold
        "890": CANCELLED,
        "891": CANCELLED,
    },
    "wannafind": {
        # callback carries no status; it is only sent on authorisation
        "auth": AUTHORIZED,
        # checkTransaction return codes
        "5": AUTHORIZED,
        "6": CAPTURED,
        "7": CANCELLED,
        "8": REFUNDED,
    },
    "twocheckout": {
        # credit_card_processed
        "Y": AUTHORIZED,
        "K": None,
    },
    "worldpay": {
        # transStatus[/authMode]
        "Y/E": AUTHORIZED,
        "Y/A": CAPTURED,
        "C": CANCELLED,
    },
    "mollie": {
        "Success": CAPTURED,
        "Cancelled": CANCELLED,
        "Expired": CANCELLED,
        "Failure": ERROR,
        "Open": None,
        "CheckedBefore": None,
    },
    "klarna": {
        "checkout_incomplete": None,
        "checkout_complete": AUTHORIZED,
        "created": AUTHORIZED,
    },
}


def lookup_status(provider: str, status_code: str) -> tuple[bool, Optional[str]]:
    """Return ``(known, state)`` for a provider's native status code."""
    table = PROVIDER_STATUS_TO_STATE.get(provider, {})
    if status_code in table:
        return True, table[status_code]
    return False, None
