import asyncio
import copy
import itertools
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from shared.utils import Settings
from webhook_service.ledger import Ledger, LedgerSession, OrderNotFoundError
from webhook_service.main import app, get_settings
from webhook_service.models import OrderDB, PaymentDB

WEBHOOK_SECRET = "test-secret"
WEBHOOK_URL = "/api/sepay/webhook"

class InMemorySession(LedgerSession):
    def __init__(self, ledger: "InMemoryLedger"):
        self.ledger = ledger

    async def _step(self, name: str):
        # Yield to the loop so concurrent transactions get a chance to interleave
        await asyncio.sleep(0)
        if self.ledger.fail_on == name:
            raise RuntimeError(f"injected failure in {name}")

    async def find_by_provider_txn_id(self, transaction_id: str) -> Optional[dict]:
        await self._step("find_by_provider_txn_id")
        for doc in self.ledger.payments.values():
            if doc.get("provider_transaction_id") == transaction_id:
                return copy.deepcopy(doc)
        return None

    async def find_one_pending_by_code(self, payment_code: str) -> Optional[dict]:
        await self._step("find_one_pending_by_code")
        for doc in self.ledger.payments.values():
            if doc["payment_code"] == payment_code and doc["status"] == "PENDING":
                return copy.deepcopy(doc)
        return None

    async def update_payment(self, payment_id, fields: dict) -> None:
        await self._step("update_payment")
        self.ledger.payments[payment_id].update(copy.deepcopy(fields))
        self.ledger.writes.append(("payments", payment_id))

    async def update_order(self, order_id, fields: dict) -> None:
        await self._step("update_order")
        if order_id not in self.ledger.orders:
            raise OrderNotFoundError(order_id)
        self.ledger.orders[order_id].update(copy.deepcopy(fields))
        self.ledger.writes.append(("orders", order_id))

    async def append_audit(self, entry: dict) -> None:
        await self._step("append_audit")
        self.ledger.audit_log.append(dict(entry))
        self.ledger.writes.append(("system_logs", None))

class InMemoryLedger(Ledger):
    """Serializes transactions and restores the previous state when one raises."""

    def __init__(self):
        self.payments = {}
        self.orders = {}
        self.audit_log = []
        self.writes = []
        self.fail_on = None
        self.fail_post_commit_audit = False
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def add_order(self, status: str = "draft") -> str:
        order_id = f"order-{next(self._ids)}"
        self.orders[order_id] = OrderDB(_id=order_id, status=status).model_dump(by_alias=True, mode="json")
        return order_id

    def add_payment(self, payment_code: str, amount_requested: int, order_id: Optional[str] = None) -> str:
        if order_id is None:
            order_id = self.add_order()
        payment_id = f"payment-{next(self._ids)}"
        self.payments[payment_id] = PaymentDB(
            _id=payment_id,
            order_id=order_id,
            payment_code=payment_code,
            amount_requested=amount_requested,
        ).model_dump(by_alias=True, mode="json", exclude_none=True)
        return payment_id

    async def run_transaction(self, fn):
        async with self._lock:
            snapshot = copy.deepcopy((self.payments, self.orders, self.audit_log, self.writes))
            try:
                return await fn(InMemorySession(self))
            except Exception:
                self.payments, self.orders, self.audit_log, self.writes = snapshot
                raise

    async def append_audit(self, entry: dict) -> None:
        if self.fail_post_commit_audit:
            raise RuntimeError("audit sink unavailable")
        self.audit_log.append(dict(entry))
        self.writes.append(("system_logs", None))

def notification(**overrides) -> dict:
    body = {
        "id": 111,
        "content": "DH001",
        "transferAmount": 500000,
        "transferType": "in",
        "gateway": "Vietcombank",
        "transactionDate": "2026-10-17 09:30:00",
        "accountNumber": "0123456789",
    }
    body.update(overrides)
    return body

@pytest.fixture
def test_settings():
    return Settings(SEPAY_WEBHOOK_SECRET=WEBHOOK_SECRET, AUDIT_IN_TRANSACTION=True)

@pytest.fixture
def ledger():
    return InMemoryLedger()

@pytest.fixture
def client(ledger, test_settings):
    app.state.ledger = ledger
    app.dependency_overrides[get_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.ledger

@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}"}
