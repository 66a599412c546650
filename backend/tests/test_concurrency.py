"""
Concurrency tests for the ledger.

Each test runs real threads against a file-backed SQLite database so that
every worker gets its own connection and units of work genuinely contend.
"""
import os
import sqlite3
import tempfile
import threading
import time
import unittest
from datetime import timedelta

from loyalty import create_app
from loyalty.errors import (
    AlreadyProcessed,
    BusyError,
    InsufficientEventPoints,
    InsufficientPoints,
    PromotionAlreadyUsed,
)
from loyalty.extensions import db
from loyalty.models import Event, Promotion, RedemptionTransaction, User
from loyalty.models.promotions import PROMOTION_KIND_ONE_TIME
from loyalty.permissions import Role
from loyalty.services import balance_service, event_award_service, redemption_service, transaction_service
from loyalty.time_utils import utcnow
from loyalty.validation import EventAwardRequest, PurchaseRequest, RedemptionRequest, TransferRequest


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_path}",
            "LEDGER_RETRY_BACKOFF_SECONDS": 0.01,
            "LOG_LEVEL": "WARNING",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            member = User(utorid="member01", name="Member", role=Role.REGULAR, balance=100, verified=True)
            friend = User(utorid="friend01", name="Friend", role=Role.REGULAR, balance=500, verified=True)
            cashier = User(utorid="cashier1", name="Cashier", role=Role.CASHIER, balance=0, verified=True)
            db.session.add_all([member, friend, cashier])
            db.session.commit()
            self.member_id = member.id
            self.friend_id = friend.id
            self.cashier_id = cashier.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, targets):
        """Start every target at once; return (results, errors)."""
        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(targets))

        def worker(target):
            with self.app.app_context():
                try:
                    barrier.wait()
                    result = target()
                    with lock:
                        results.append(result)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def _balance(self, user_id):
        with self.app.app_context():
            return balance_service.current_balance(user_id)

    def test_concurrent_redemptions_cannot_overbook(self):
        request = RedemptionRequest(amount=30)
        results, errors = self._run_workers(
            [lambda: redemption_service.create_redemption(request, self.member_id)] * 5
        )

        self.assertEqual(len(results), 3)
        self.assertEqual(len(errors), 2)
        self.assertTrue(all(isinstance(e, InsufficientPoints) for e in errors), errors)
        with self.app.app_context():
            self.assertEqual(balance_service.pending_redemption_total(self.member_id), 90)
            self.assertEqual(balance_service.current_balance(self.member_id), 100)

    def test_concurrent_transfers_conserve_points(self):
        to_friend = TransferRequest(recipient_utorid="friend01", amount=20)
        to_member = TransferRequest(recipient_utorid="member01", amount=100)
        targets = (
            [lambda: transaction_service.create_transfer(to_friend, self.member_id)] * 5
            + [lambda: transaction_service.create_transfer(to_member, self.friend_id)] * 5
        )

        results, errors = self._run_workers(targets)

        self.assertFalse(errors)
        self.assertEqual(len(results), 10)
        self.assertEqual(self._balance(self.member_id), 100 - 100 + 500)
        self.assertEqual(self._balance(self.friend_id), 500 + 100 - 500)

    def test_concurrent_processing_deducts_once(self):
        with self.app.app_context():
            redemption_id = redemption_service.create_redemption(
                RedemptionRequest(amount=60), self.member_id
            )["id"]

        results, errors = self._run_workers(
            [lambda: redemption_service.process_redemption(redemption_id, self.cashier_id)] * 4
        )

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 3)
        self.assertTrue(all(isinstance(e, AlreadyProcessed) for e in errors), errors)
        self.assertEqual(self._balance(self.member_id), 40)
        with self.app.app_context():
            txn = db.session.get(RedemptionTransaction, redemption_id)
            self.assertEqual(txn.processed_by_user_id, self.cashier_id)

    def test_concurrent_one_time_promotion_used_once(self):
        with self.app.app_context():
            now = utcnow()
            promo = Promotion(
                name="Welcome",
                kind=PROMOTION_KIND_ONE_TIME,
                points=100,
                start_time=now - timedelta(days=1),
                end_time=now + timedelta(days=1),
            )
            db.session.add(promo)
            db.session.commit()
            promo_id = promo.id

        request = PurchaseRequest(utorid="member01", spent_cents=4000, promotion_ids=(promo_id,))
        results, errors = self._run_workers(
            [lambda: transaction_service.create_purchase(request, self.cashier_id)] * 4
        )

        self.assertEqual(len(results), 1)
        self.assertTrue(all(isinstance(e, PromotionAlreadyUsed) for e in errors), errors)
        self.assertEqual(self._balance(self.member_id), 100 + 260)

    def test_purchases_and_redemption_processing_share_one_balance(self):
        with self.app.app_context():
            redemption_id = redemption_service.create_redemption(
                RedemptionRequest(amount=100), self.member_id
            )["id"]

        purchase = PurchaseRequest(utorid="member01", spent_cents=4000)
        targets = (
            [lambda: transaction_service.create_purchase(purchase, self.cashier_id)] * 4
            + [lambda: redemption_service.process_redemption(redemption_id, self.cashier_id)]
        )

        results, errors = self._run_workers(targets)

        self.assertFalse(errors)
        self.assertEqual(len(results), 5)
        self.assertEqual(self._balance(self.member_id), 100 + 4 * 160 - 100)
        with self.app.app_context():
            self.assertEqual(balance_service.pending_redemption_total(self.member_id), 0)

    def test_concurrent_event_awards_respect_budget(self):
        with self.app.app_context():
            manager = User(utorid="manager1", name="Manager", role=Role.MANAGER, balance=0, verified=True)
            db.session.add(manager)
            event = Event(name="Games Night", points_remain=50, points_awarded=0)
            event.guests.append(db.session.get(User, self.friend_id))
            db.session.add(event)
            db.session.commit()
            manager_id = manager.id
            event_id = event.id

        request = EventAwardRequest(amount=20, utorid="friend01")
        results, errors = self._run_workers(
            [lambda: event_award_service.create_event_award(event_id, request, manager_id)] * 5
        )

        self.assertEqual(len(results), 2)
        self.assertEqual(len(errors), 3)
        self.assertTrue(all(isinstance(e, InsufficientEventPoints) for e in errors), errors)
        self.assertEqual(self._balance(self.friend_id), 500 + 40)
        with self.app.app_context():
            event = db.session.get(Event, event_id)
            self.assertEqual(event.points_remain, 10)
            self.assertEqual(event.points_awarded, 40)

    def test_lock_wait_is_bounded_by_timeout(self):
        impatient = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_path}",
            "LEDGER_LOCK_TIMEOUT_SECONDS": 0.5,
            "LEDGER_RETRY_BACKOFF_SECONDS": 0.01,
            "LOG_LEVEL": "WARNING",
        })
        holder = sqlite3.connect(self.db_path, isolation_level=None)
        holder.execute("BEGIN IMMEDIATE")
        try:
            with impatient.app_context():
                started = time.monotonic()
                with self.assertRaises(BusyError):
                    redemption_service.create_redemption(RedemptionRequest(amount=10), self.member_id)
                elapsed = time.monotonic() - started
                db.session.remove()
                db.engine.dispose()
        finally:
            holder.execute("ROLLBACK")
            holder.close()

        self.assertGreaterEqual(elapsed, 0.4)
        self.assertLess(elapsed, 1.2)
        with self.app.app_context():
            self.assertEqual(balance_service.pending_redemption_total(self.member_id), 0)


if __name__ == "__main__":
    unittest.main()
