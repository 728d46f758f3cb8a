"""
Matching of inbound bank transfers against pending payment obligations.

One call of ``reconcile`` is one transaction against the ledger:

1. a payment already carrying the bank transaction id means the notification
   was redelivered (ALREADY_PROCESSED, no writes);
2. otherwise the pending payment with the transfer's payment code is looked up
   (NOT_FOUND, no writes, when there is none);
3. a transfer smaller than the requested amount only leaves an audit entry
   (AMOUNT_MISMATCH) and the payment stays pending;
4. anything else settles the payment and marks its order paid (SUCCESS).

Over-payment settles. Payments only ever move PENDING -> SUCCESS.
"""
import logging
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from shared.utils import Settings, settings as default_settings
from webhook_service.ledger import Ledger, LedgerSession
from webhook_service.models import (
    AuditLogDB, LogAction, LogModule, LogSeverity,
    OrderPaymentStatus, PaymentDB, PaymentStatus, ReconciliationStatus,
)
from webhook_service.schemas import NormalizedTransfer

logger = logging.getLogger(__name__)

class ReconciliationResult(BaseModel):
    status: ReconciliationStatus
    message: Optional[str] = None
    payment_id: Optional[Any] = None
    order_id: Optional[Any] = None

def _audit_entry(detail: str, severity: LogSeverity, settings: Settings) -> dict:
    return AuditLogDB(
        action=LogAction.PAYMENT,
        module=LogModule.ORDER,
        severity=severity,
        detail=detail,
        userName=settings.WEBHOOK_ACTOR_NAME,
    ).to_document()

async def reconcile(
    ledger: Ledger,
    transfer: NormalizedTransfer,
    raw_payload: dict,
    settings: Settings = default_settings,
) -> ReconciliationResult:
    # Audit entries held back until commit when they are not part of the transaction
    deferred: List[dict] = []

    async def write_audit(session: LedgerSession, entry: dict) -> None:
        if settings.AUDIT_IN_TRANSACTION:
            await session.append_audit(entry)
        else:
            deferred.append(entry)

    async def unit_of_work(session: LedgerSession) -> ReconciliationResult:
        # The store may run this more than once on write conflicts
        deferred.clear()

        duplicate = await session.find_by_provider_txn_id(transfer.transaction_id)
        if duplicate is not None:
            return ReconciliationResult(
                status=ReconciliationStatus.ALREADY_PROCESSED,
                message="Transaction ID already exists",
                payment_id=duplicate.get("_id"),
                order_id=duplicate.get("order_id"),
            )

        payment = await session.find_one_pending_by_code(transfer.payment_code)
        if payment is None:
            return ReconciliationResult(
                status=ReconciliationStatus.NOT_FOUND,
                message=f"No pending payment for code: {transfer.payment_code}",
            )

        pending = PaymentDB.model_validate(payment)
        order_id = pending.order_id
        requested = pending.amount_requested

        if transfer.amount_received < requested:
            await write_audit(session, _audit_entry(
                f"Amount mismatch on order {order_id}: requested {requested}, "
                f"received {transfer.amount_received}",
                LogSeverity.MEDIUM,
                settings,
            ))
            return ReconciliationResult(
                status=ReconciliationStatus.AMOUNT_MISMATCH,
                message="Insufficient amount",
                payment_id=pending.id,
                order_id=order_id,
            )

        now = datetime.utcnow()
        await session.update_payment(pending.id, {
            "status": PaymentStatus.SUCCESS.value,
            "amount_received": transfer.amount_received,
            "provider_transaction_id": transfer.transaction_id,
            "completed_at": now,
            "metadata": raw_payload,
        })
        await session.update_order(order_id, {
            "paymentStatus": OrderPaymentStatus.PAID.value,
            "status": settings.CONFIRMED_ORDER_STATUS,
            "updatedAt": now,
        })
        await write_audit(session, _audit_entry(
            f"Payment for order {order_id} settled via {settings.GATEWAY_NAME}. "
            f"Amount: {transfer.amount_received}",
            LogSeverity.LOW,
            settings,
        ))
        return ReconciliationResult(
            status=ReconciliationStatus.SUCCESS,
            payment_id=pending.id,
            order_id=order_id,
        )

    result = await ledger.run_transaction(unit_of_work)

    for entry in deferred:
        try:
            await ledger.append_audit(entry)
        except Exception:
            logger.exception(
                "Audit log write failed after commit",
                extra={"transaction_id": transfer.transaction_id, "outcome": result.status.value},
            )

    return result
