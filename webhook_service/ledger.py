"""
Transactional access to the payment, order and audit collections.

Reconciliation talks to the store only through ``Ledger.run_transaction``: the
callback receives a ``LedgerSession`` whose reads and writes commit or roll back
together. Conflicting concurrent transactions are retried by the store driver,
never by the caller.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from shared.utils import Settings
from webhook_service.models import PaymentStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# --- Errors ---
class LedgerError(Exception):
    pass

class OrderNotFoundError(LedgerError):
    def __init__(self, order_id: Any):
        super().__init__(f"Order {order_id} linked to payment does not exist")
        self.order_id = order_id

# --- Port ---
class LedgerSession(ABC):
    @abstractmethod
    async def find_by_provider_txn_id(self, transaction_id: str) -> Optional[dict]: ...

    @abstractmethod
    async def find_one_pending_by_code(self, payment_code: str) -> Optional[dict]: ...

    @abstractmethod
    async def update_payment(self, payment_id: Any, fields: dict) -> None: ...

    @abstractmethod
    async def update_order(self, order_id: Any, fields: dict) -> None: ...

    @abstractmethod
    async def append_audit(self, entry: dict) -> None: ...

class Ledger(ABC):
    @abstractmethod
    async def run_transaction(self, fn: Callable[[LedgerSession], Awaitable[T]]) -> T: ...

    @abstractmethod
    async def append_audit(self, entry: dict) -> None:
        """Write an audit entry outside of any transaction."""

    async def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass

# --- MongoDB ---
def order_key(order_id: Any) -> dict:
    """Match an order whether its _id was stored as an ObjectId or a plain string."""
    if isinstance(order_id, str) and ObjectId.is_valid(order_id):
        return {"_id": {"$in": [order_id, ObjectId(order_id)]}}
    return {"_id": order_id}

class MongoLedgerSession(LedgerSession):
    def __init__(self, ledger: "MongoLedger", session):
        self.ledger = ledger
        self.session = session

    async def find_by_provider_txn_id(self, transaction_id: str) -> Optional[dict]:
        return await self.ledger.payments.find_one(
            {"provider_transaction_id": transaction_id}, session=self.session
        )

    async def find_one_pending_by_code(self, payment_code: str) -> Optional[dict]:
        cursor = self.ledger.payments.find(
            {"payment_code": payment_code, "status": PaymentStatus.PENDING.value},
            session=self.session,
        ).limit(2)
        docs = await cursor.to_list(length=2)
        if not docs:
            return None
        if len(docs) > 1:
            logger.warning(
                "Several pending payments share one payment code, settling the first",
                extra={"payment_code": payment_code},
            )
        return docs[0]

    async def update_payment(self, payment_id: Any, fields: dict) -> None:
        await self.ledger.payments.update_one(
            {"_id": payment_id}, {"$set": fields}, session=self.session
        )

    async def update_order(self, order_id: Any, fields: dict) -> None:
        result = await self.ledger.orders.update_one(
            order_key(order_id), {"$set": fields}, session=self.session
        )
        if result.matched_count == 0:
            raise OrderNotFoundError(order_id)

    async def append_audit(self, entry: dict) -> None:
        await self.ledger.audit.insert_one(dict(entry), session=self.session)

class MongoLedger(Ledger):
    def __init__(self, client: AsyncIOMotorClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.db = client[settings.DATABASE_NAME]
        self.payments = self.db[settings.PAYMENTS_COLLECTION]
        self.orders = self.db[settings.ORDERS_COLLECTION]
        self.audit = self.db[settings.AUDIT_COLLECTION]

    async def ensure_indexes(self) -> None:
        await self.payments.create_index(
            [("payment_code", ASCENDING), ("status", ASCENDING)]
        )
        # Only settled payments carry a provider id; one settlement per bank transaction
        await self.payments.create_index(
            "provider_transaction_id",
            unique=True,
            partialFilterExpression={"provider_transaction_id": {"$type": "string"}},
        )
        await self.audit.create_index("timestamp")

    async def run_transaction(self, fn: Callable[[LedgerSession], Awaitable[T]]) -> T:
        async def callback(session):
            return await fn(MongoLedgerSession(self, session))

        async with await self.client.start_session() as session:
            return await session.with_transaction(
                callback,
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                max_commit_time_ms=self.settings.TRANSACTION_MAX_COMMIT_TIME_MS,
            )

    async def append_audit(self, entry: dict) -> None:
        await self.audit.insert_one(dict(entry))

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except Exception:
            logger.exception("Database ping failed")
            return False

    def close(self) -> None:
        self.client.close()
