from pydantic import BaseModel
from typing import Optional, Union

from webhook_service.models import ReconciliationStatus

class SePayWebhookPayload(BaseModel):
    """Balance-change notification pushed by the gateway. Unknown keys are kept for audit."""
    id: Optional[Union[int, str]] = None
    content: Optional[str] = None
    transferAmount: Optional[Union[int, float, str]] = None
    transferType: Optional[str] = None
    gateway: Optional[str] = None
    transactionDate: Optional[str] = None
    accountNumber: Optional[str] = None

    class Config:
        extra = "allow"

class NormalizedTransfer(BaseModel):
    transaction_id: str
    payment_code: str
    amount_received: int

class WebhookResponse(BaseModel):
    success: bool
    idempotency: Optional[ReconciliationStatus] = None
    error: Optional[str] = None

class IgnoredResponse(BaseModel):
    message: str = "Ignore: Non-payment transaction"
