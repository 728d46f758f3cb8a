from datetime import datetime
from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field

class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"

class OrderPaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"

class ReconciliationStatus(str, Enum):
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    NOT_FOUND = "NOT_FOUND"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    SUCCESS = "SUCCESS"

# Audit vocabulary shared with the back-office system log
class LogAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    PAYMENT = "PAYMENT"

class LogModule(str, Enum):
    ORDER = "ORDER"
    FINANCE = "FINANCE"
    SYSTEM = "SYSTEM"

class LogSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class PaymentDB(BaseModel):
    id: Optional[Any] = Field(None, alias="_id")
    order_id: str
    payment_code: str
    amount_requested: int
    amount_received: Optional[int] = None
    status: PaymentStatus = PaymentStatus.PENDING
    provider_transaction_id: Optional[str] = None
    metadata: Optional[dict] = None
    completed_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class OrderDB(BaseModel):
    id: Optional[Any] = Field(None, alias="_id")
    paymentStatus: OrderPaymentStatus = OrderPaymentStatus.UNPAID
    status: str = "draft"
    updatedAt: Optional[datetime] = None

    class Config:
        populate_by_name = True

class AuditLogDB(BaseModel):
    action: LogAction
    module: LogModule
    severity: LogSeverity = LogSeverity.LOW
    detail: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    userId: str = "system"
    userName: str = "System"

    def to_document(self) -> dict:
        return self.model_dump(mode="json") | {"timestamp": self.timestamp}
