"""
Redemption tests.

Verifies:
- Creating a redemption reserves points without touching the balance
- Reservations count against later redemptions
- Processing deducts exactly once, after re-checking the live balance
"""

import pytest

from loyalty.errors import (
    AlreadyProcessed,
    AuthorizationError,
    InsufficientPoints,
    NotARedemption,
    TransactionNotFound,
)
from loyalty.models import RedemptionTransaction, Transaction
from loyalty.services import balance_service, redemption_service, transaction_service
from loyalty.validation import AdjustmentRequest, PurchaseRequest, RedemptionRequest

from conftest import balance_of


@pytest.fixture
def redeemer(make_user):
    return make_user("redeem01", balance=100, verified=True)


# =============================================================================
# CREATION (RESERVATION)
# =============================================================================


class TestCreateRedemption:

    def test_reserves_without_deducting(self, db_session, redeemer):
        result = redemption_service.create_redemption(RedemptionRequest(amount=60, remark="mug"), redeemer.id)

        assert result["type"] == "redemption"
        assert result["amount"] == 60
        assert result["processedBy"] is None
        assert result["remark"] == "mug"
        assert balance_of(redeemer) == 100

        txn = db_session.get(Transaction, result["id"])
        assert isinstance(txn, RedemptionTransaction)
        assert txn.amount == -60
        assert txn.redeemed == 60
        assert txn.is_processed is False
        assert txn.credit_applied is False

    def test_pending_redemptions_reduce_available_balance(self, redeemer):
        redemption_service.create_redemption(RedemptionRequest(amount=60), redeemer.id)

        with pytest.raises(InsufficientPoints):
            redemption_service.create_redemption(RedemptionRequest(amount=60), redeemer.id)

        assert balance_of(redeemer) == 100
        assert balance_service.pending_redemption_total(redeemer.id) == 60
        assert balance_service.available_balance(redeemer.id) == 40

    def test_can_reserve_remaining_headroom(self, redeemer):
        redemption_service.create_redemption(RedemptionRequest(amount=60), redeemer.id)
        redemption_service.create_redemption(RedemptionRequest(amount=40), redeemer.id)
        assert balance_service.available_balance(redeemer.id) == 0

    def test_unverified_member(self, make_user):
        unverified = make_user("newbie01", balance=100, verified=False)
        with pytest.raises(AuthorizationError):
            redemption_service.create_redemption(RedemptionRequest(amount=10), unverified.id)


# =============================================================================
# PROCESSING
# =============================================================================


class TestProcessRedemption:

    @pytest.fixture
    def redemption_id(self, redeemer):
        return redemption_service.create_redemption(RedemptionRequest(amount=60), redeemer.id)["id"]

    def test_deducts_points(self, db_session, cashier, redeemer, redemption_id):
        result = redemption_service.process_redemption(redemption_id, cashier.id)

        assert result["processedBy"] == cashier.utorid
        assert result["redeemed"] == 60
        assert result["createdBy"] == redeemer.utorid
        assert balance_of(redeemer) == 40

        txn = db_session.get(Transaction, redemption_id)
        assert txn.is_processed
        assert txn.processed_at is not None
        assert txn.credit_applied is True
        assert txn.related_id == cashier.id
        assert balance_service.pending_redemption_total(redeemer.id) == 0

    def test_processed_only_once(self, cashier, redeemer, redemption_id):
        redemption_service.process_redemption(redemption_id, cashier.id)

        with pytest.raises(AlreadyProcessed):
            redemption_service.process_redemption(redemption_id, cashier.id)

        assert balance_of(redeemer) == 40

    def test_regular_member_cannot_process(self, redeemer, redemption_id):
        with pytest.raises(AuthorizationError):
            redemption_service.process_redemption(redemption_id, redeemer.id)
        assert balance_of(redeemer) == 100

    def test_not_a_redemption(self, cashier, redeemer):
        purchase = transaction_service.create_purchase(
            PurchaseRequest(utorid=redeemer.utorid, spent_cents=1000), cashier.id
        )
        with pytest.raises(NotARedemption):
            redemption_service.process_redemption(purchase["id"], cashier.id)

    def test_unknown_transaction(self, cashier):
        with pytest.raises(TransactionNotFound):
            redemption_service.process_redemption(12345, cashier.id)

    def test_balance_rechecked_at_processing(self, db_session, cashier, manager, redeemer, redemption_id):
        # Balance drops to 50 after the 60-point reservation was accepted
        transaction_service.create_adjustment(
            AdjustmentRequest(utorid=redeemer.utorid, amount=-50, related_id=redemption_id), manager.id
        )

        with pytest.raises(InsufficientPoints):
            redemption_service.process_redemption(redemption_id, cashier.id)

        assert balance_of(redeemer) == 50
        assert db_session.get(Transaction, redemption_id).is_processed is False
