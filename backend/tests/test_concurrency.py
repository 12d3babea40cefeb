"""Concurrent delivery tests"""
import asyncio
import threading
import time

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from unittest.mock import patch

from paddock.db.session import get_db
from paddock.main import app
from paddock.models import Base
from paddock.models.payment_event import PaymentEventRecord
from paddock.models.token_balance import TokenBalance
from paddock.models.token_purchase import TokenPurchase
from paddock.schemas.events import PaymentEvent
from paddock.services.results import WebhookState
from paddock.services.webhook_service import WebhookAck, apply_verified_event

from conftest import build_event, checkout_session

WORKERS = 4


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """Separate connections per session, unlike the shared in-memory engine"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.mark.critical
class TestParallelDuplicateDeliveries:

    def test_same_token_purchase_from_many_threads_credits_once(self, file_session_factory):
        session = checkout_session("pi_tokens_1", 500, {"user_id": "U1", "type": "tokens", "token_count": "50"})
        event = PaymentEvent.model_validate(
            build_event("checkout.session.completed", session, event_id="evt_tokens_parallel")
        )
        barrier = threading.Barrier(WORKERS)
        outcomes = []
        errors = []
        lock = threading.Lock()

        def deliver_once():
            db = file_session_factory()
            try:
                barrier.wait(timeout=5)
                ack = apply_verified_event(event, db)
                with lock:
                    outcomes.append((ack.status_code, ack.outcome.value))
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                db.close()

        threads = [threading.Thread(target=deliver_once) for _ in range(WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert sorted(outcomes) == [(200, "applied")] + [(200, "duplicate")] * (WORKERS - 1)

        db = file_session_factory()
        try:
            assert db.query(TokenPurchase).count() == 1
            balance = db.query(TokenBalance).filter(TokenBalance.user_id == "U1").one()
            assert balance.balance == 50
            assert balance.total_purchased == 50
            assert db.query(PaymentEventRecord).one().outcome == "applied"
        finally:
            db.close()


@pytest.mark.high
class TestWebhookRouteConcurrency:

    def test_slow_deliveries_do_not_block_each_other(self):
        delay = 0.5

        def slow_process(payload, sig_header, db):
            time.sleep(delay)
            return WebhookAck(status_code=200, body={"received": True}, state=WebhookState.ACKNOWLEDGED)

        async def send_two():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
                started = time.perf_counter()
                responses = await asyncio.gather(*(
                    ac.post("/api/stripe/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
                    for _ in range(2)
                ))
                return time.perf_counter() - started, responses

        app.dependency_overrides[get_db] = lambda: None
        try:
            with patch("paddock.api.webhooks.process_payment_webhook", side_effect=slow_process):
                elapsed, responses = asyncio.run(send_two())
        finally:
            app.dependency_overrides.clear()

        assert [r.status_code for r in responses] == [200, 200]
        assert elapsed < delay * 1.8
