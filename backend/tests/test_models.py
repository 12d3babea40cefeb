"""Database integrity tests"""
import pytest
from sqlalchemy.exc import IntegrityError

from paddock.models.payment_event import PaymentEventRecord
from paddock.models.subscription import Subscription
from paddock.models.token_balance import TokenBalance
from paddock.models.token_purchase import TokenPurchase
from paddock.models.transaction import Transaction


def _transaction(payment_intent="pi_1", total=1000, payee=900, platform=100) -> Transaction:
    return Transaction(
        stripe_payment_intent_id=payment_intent,
        transaction_type="tip",
        payer_id="U1",
        payee_id="R1",
        total_amount_cents=total,
        payee_amount_cents=payee,
        platform_amount_cents=platform,
    )


@pytest.mark.medium
class TestTransactionConstraints:

    def test_defaults(self, db_session):
        db_session.add(_transaction())
        db_session.commit()

        row = db_session.query(Transaction).one()
        assert row.status == "pending"
        assert row.currency == "usd"
        assert row.processed_at is None

    def test_split_must_conserve_total(self, db_session):
        db_session.add(_transaction(total=1000, payee=900, platform=50))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_payment_intent_is_unique(self, db_session):
        db_session.add(_transaction())
        db_session.commit()

        db_session.add(_transaction())
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@pytest.mark.medium
class TestTokenConstraints:

    def test_balance_cannot_go_negative(self, db_session):
        db_session.add(TokenBalance(user_id="U1", balance=-1, total_purchased=0))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_one_purchase_per_user_and_payment_intent(self, db_session):
        db_session.add(TokenPurchase(user_id="U1", token_amount=50, price_cents=500, stripe_payment_intent_id="pi_1"))
        db_session.commit()

        # The same payment intent for another user is a different purchase
        db_session.add(TokenPurchase(user_id="U2", token_amount=50, price_cents=500, stripe_payment_intent_id="pi_1"))
        db_session.commit()

        db_session.add(TokenPurchase(user_id="U1", token_amount=50, price_cents=500, stripe_payment_intent_id="pi_1"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(TokenPurchase).count() == 2


@pytest.mark.medium
class TestUniqueExternalIds:

    def test_subscription_id_is_unique(self, db_session):
        db_session.add(Subscription(stripe_subscription_id="sub_1", user_id="U1", status="active"))
        db_session.commit()

        db_session.add(Subscription(stripe_subscription_id="sub_1", user_id="U2", status="active"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_event_id_is_unique(self, db_session):
        record = dict(event_type="invoice.paid", outcome="applied", payload={"id": "evt_1"})
        db_session.add(PaymentEventRecord(event_id="evt_1", **record))
        db_session.commit()

        db_session.add(PaymentEventRecord(event_id="evt_1", **record))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
