"""Token balance accumulator tests"""
import pytest
from unittest.mock import patch
from prometheus_client import REGISTRY

from paddock.core.config import settings
from paddock.models.token_balance import TokenBalance
from paddock.models.token_purchase import TokenPurchase
from paddock.services import token_service
from paddock.services.results import TokenCreditConflictError, TransientStoreError
from paddock.services.token_service import (
    TokenFulfillment,
    credit_tokens,
    fulfill_token_purchase,
    get_token_balance,
)


def _balance(db_session, user_id="U1") -> TokenBalance:
    db_session.expire_all()
    return db_session.query(TokenBalance).filter(TokenBalance.user_id == user_id).first()


@pytest.mark.critical
class TestFulfillTokenPurchase:
    """One purchase row and one credit per payment intent"""

    def test_purchase_is_recorded_and_credited(self, db_session):
        outcome = fulfill_token_purchase("U1", 50, 500, "pi_tokens_1", db_session)
        db_session.commit()

        assert outcome == TokenFulfillment.CREDITED
        purchase = db_session.query(TokenPurchase).one()
        assert purchase.token_amount == 50
        assert purchase.price_cents == 500
        assert purchase.stripe_payment_intent_id == "pi_tokens_1"
        balance = _balance(db_session)
        assert balance.balance == 50
        assert balance.total_purchased == 50

    def test_duplicate_payment_intent_does_not_credit_twice(self, db_session):
        fulfill_token_purchase("U1", 50, 500, "pi_tokens_1", db_session)
        db_session.commit()

        outcome = fulfill_token_purchase("U1", 50, 500, "pi_tokens_1", db_session)
        db_session.commit()

        assert outcome == TokenFulfillment.DUPLICATE
        assert db_session.query(TokenPurchase).count() == 1
        assert _balance(db_session).balance == 50

    def test_separate_purchases_accumulate(self, db_session):
        fulfill_token_purchase("U1", 50, 500, "pi_tokens_1", db_session)
        fulfill_token_purchase("U1", 20, 200, "pi_tokens_2", db_session)
        db_session.commit()

        balance = _balance(db_session)
        assert balance.balance == 70
        assert balance.total_purchased == 70
        assert db_session.query(TokenPurchase).count() == 2

    def test_non_positive_token_count_is_rejected(self, db_session):
        with pytest.raises(ValueError):
            fulfill_token_purchase("U1", 0, 500, "pi_tokens_1", db_session)


@pytest.mark.critical
class TestCreditTokens:
    """Atomic upsert-increment and the optimistic fallback"""

    def test_atomic_credit_creates_then_increments(self, db_session):
        credit_tokens("U1", 10, db_session)
        credit_tokens("U1", 5, db_session)
        db_session.commit()

        balance = _balance(db_session)
        assert balance.balance == 15
        assert balance.total_purchased == 15
        assert balance.version == 2

    def test_falls_back_when_dialect_has_no_upsert(self, db_session):
        with patch.object(token_service, "dialect_insert", return_value=None):
            credit_tokens("U1", 10, db_session)
            credit_tokens("U1", 5, db_session)
        db_session.commit()

        balance = _balance(db_session)
        assert balance.balance == 15
        assert balance.version == 2

    def test_optimistic_credit_bumps_version(self, db_session):
        with patch.object(settings, "TOKEN_CREDIT_STRATEGY", "optimistic"):
            credit_tokens("U1", 10, db_session)
            credit_tokens("U1", 5, db_session)
            credit_tokens("U1", 1, db_session)
        db_session.commit()

        balance = _balance(db_session)
        assert balance.balance == 16
        assert balance.total_purchased == 16
        assert balance.version == 3

    def test_optimistic_credit_retries_after_lost_race(self, db_session):
        db_session.add(TokenBalance(user_id="U1", balance=5, total_purchased=5, version=1))
        db_session.commit()

        real_cas = token_service._compare_and_swap_balance
        calls = []

        def lose_first_race(db, row, amount):
            calls.append(row.version)
            if len(calls) == 1:
                return False
            return real_cas(db, row, amount)

        before = REGISTRY.get_sample_value("paddock_token_credit_retries_total") or 0
        with patch.object(settings, "TOKEN_CREDIT_STRATEGY", "optimistic"):
            with patch.object(token_service, "_compare_and_swap_balance", side_effect=lose_first_race):
                credit_tokens("U1", 10, db_session)
        db_session.commit()

        assert len(calls) == 2
        assert _balance(db_session).balance == 15
        assert REGISTRY.get_sample_value("paddock_token_credit_retries_total") == before + 1

    def test_optimistic_credit_gives_up_with_retryable_error(self, db_session):
        db_session.add(TokenBalance(user_id="U1", balance=5, total_purchased=5, version=1))
        db_session.commit()

        with patch.object(settings, "TOKEN_CREDIT_STRATEGY", "optimistic"):
            with patch.object(settings, "TOKEN_CREDIT_MAX_RETRIES", 3):
                with patch.object(token_service, "_compare_and_swap_balance", return_value=False) as cas:
                    with pytest.raises(TokenCreditConflictError):
                        credit_tokens("U1", 10, db_session)

        assert cas.call_count == 3
        assert issubclass(TokenCreditConflictError, TransientStoreError)
        db_session.rollback()
        assert _balance(db_session).balance == 5

    def test_stale_version_does_not_write(self, db_session):
        db_session.add(TokenBalance(user_id="U1", balance=5, total_purchased=5, version=1))
        db_session.commit()
        row = _balance(db_session)
        read_snapshot = TokenBalance(id=row.id, user_id="U1", balance=5, total_purchased=5, version=1)

        # Someone else wrote after we read
        db_session.query(TokenBalance).filter(TokenBalance.id == row.id).update(
            {TokenBalance.balance: 7, TokenBalance.version: 2}, synchronize_session=False
        )
        db_session.commit()

        assert token_service._compare_and_swap_balance(db_session, read_snapshot, 10) is False
        assert _balance(db_session).balance == 7

    def test_non_positive_amount_is_rejected(self, db_session):
        with pytest.raises(ValueError):
            credit_tokens("U1", -5, db_session)


@pytest.mark.medium
class TestGetTokenBalance:

    def test_unknown_user_returns_none(self, db_session):
        assert get_token_balance("nobody", db_session) is None

    def test_reports_balance_and_purchase_count(self, db_session):
        fulfill_token_purchase("U1", 50, 500, "pi_tokens_1", db_session)
        db_session.commit()

        info = get_token_balance("U1", db_session)
        assert info["balance"] == 50
        assert info["total_purchased"] == 50
        assert info["purchases"] == 1
