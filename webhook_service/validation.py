from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from webhook_service.schemas import SePayWebhookPayload, NormalizedTransfer

INBOUND = "in"

# Largest value a MongoDB 64-bit integer can hold
MAX_AMOUNT = Decimal(2**63 - 1)

class PayloadError(ValueError):
    """The notification body cannot be interpreted as a transfer."""

def parse_payload(body: Any) -> SePayWebhookPayload:
    if not isinstance(body, dict):
        raise PayloadError(f"Expected a JSON object, got {type(body).__name__}")
    try:
        return SePayWebhookPayload.model_validate(body)
    except ValidationError as e:
        raise PayloadError(f"Invalid notification body: {e.error_count()} field error(s)") from e

def parse_amount(raw: Any) -> int:
    """Whole currency units; fractional, negative and non-numeric values are rejected."""
    if isinstance(raw, bool):
        raise PayloadError("transferAmount must be a number")
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation:
        raise PayloadError(f"transferAmount is not a number: {raw!r}")
    if not amount.is_finite():
        raise PayloadError(f"transferAmount must be a whole amount: {raw!r}")
    if amount > MAX_AMOUNT:
        raise PayloadError(f"transferAmount is out of range: {raw!r}")
    if amount != amount.to_integral_value():
        raise PayloadError(f"transferAmount must be a whole amount: {raw!r}")
    if amount < 0:
        raise PayloadError(f"transferAmount must not be negative: {raw!r}")
    return int(amount)

def normalize_payload(payload: SePayWebhookPayload) -> Optional[NormalizedTransfer]:
    """
    Screen a notification and reduce it to what reconciliation needs.

    Returns None for traffic that is not an inbound payment (outbound transfers,
    empty description, zero amount); the caller acknowledges those without
    touching the store.
    """
    if payload.transferType != INBOUND:
        return None
    if not payload.content or payload.transferAmount in (None, ""):
        return None

    amount = parse_amount(payload.transferAmount)
    if amount == 0:
        return None

    if payload.id is None or str(payload.id).strip() == "":
        raise PayloadError("Missing transaction id")

    return NormalizedTransfer(
        transaction_id=str(payload.id),
        # Must match the stored payment_code verbatim, so only surrounding whitespace goes
        payment_code=payload.content.strip(),
        amount_received=amount,
    )
