import unittest

from stockwatch import create_app
from stockwatch.extensions import db
from stockwatch.models import Alert, Product
from stockwatch.services import alert_service
from stockwatch.services.alert_service import (
    AlertLifecycleError,
    can_transition,
)
from stockwatch.services.ledger_store import NotFoundError
from stockwatch.time_utils import FixedClock
from stockwatch.validation import ValidationError


class AlertLifecycleTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.clock = FixedClock()
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "CLOCK": cls.clock,
        })
        with cls.app.app_context():
            db.create_all()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()

    def setUp(self):
        # Fresh context per test so the ledger store cache starts empty
        self.ctx = self.app.app_context()
        self.ctx.push()

        db.session.query(Alert).delete()
        db.session.query(Product).delete()
        db.session.commit()

        now = self.clock.now()
        db.session.add(Product(
            product_id="p1",
            name="Widget",
            description="Lifecycle test product.",
            min_threshold=5,
            created_at=now,
            updated_at=now,
        ))
        db.session.commit()

    def tearDown(self):
        db.session.rollback()
        self.ctx.pop()

    def _new_alert(self, **overrides):
        params = {"product_id": "p1", "threshold": 5, "current_stock": 3}
        params.update(overrides)
        return alert_service.create_alert(**params)

    def test_can_transition_forward_only(self):
        self.assertTrue(can_transition("NEW", "PROCESSING"))
        self.assertTrue(can_transition("NEW", "SENT"))
        self.assertTrue(can_transition("SENT", "ACKNOWLEDGED"))
        self.assertTrue(can_transition("NEW", "NEW"))
        self.assertFalse(can_transition("SENT", "PROCESSING"))
        self.assertFalse(can_transition("ACKNOWLEDGED", "NEW"))

    def test_can_transition_rejects_unknown_status(self):
        with self.assertRaises(ValidationError):
            can_transition("NEW", "CLOSED")

    def test_acknowledge_sets_fields_and_clears_active_key(self):
        alert = self._new_alert()
        alert.active_key = "p1"
        db.session.commit()

        acked = alert_service.acknowledge_alert(alert.alert_id, user_id="ops")

        self.assertEqual(acked.status, "ACKNOWLEDGED")
        self.assertEqual(acked.acknowledged_by, "ops")
        self.assertEqual(acked.acknowledged_at, self.clock.now())
        self.assertIsNone(acked.active_key)

    def test_acknowledge_is_idempotent(self):
        alert = self._new_alert()
        first = alert_service.acknowledge_alert(alert.alert_id, user_id="ops")
        acknowledged_at = first.acknowledged_at

        self.clock.advance(hours=1)
        second = alert_service.acknowledge_alert(alert.alert_id, user_id="someone-else")

        self.assertEqual(second.acknowledged_at, acknowledged_at)
        self.assertEqual(second.acknowledged_by, "ops")

    def test_acknowledge_defaults_user_to_system(self):
        alert = self._new_alert()

        acked = alert_service.acknowledge_alert(alert.alert_id)

        self.assertEqual(acked.acknowledged_by, "system")

    def test_acknowledge_missing_alert(self):
        with self.assertRaises(NotFoundError):
            alert_service.acknowledge_alert("missing")

    def test_advance_status_moves_forward(self):
        alert = self._new_alert()

        moved = alert_service.advance_alert_status(alert.alert_id, "PROCESSING")
        self.assertEqual(moved.status, "PROCESSING")

        moved = alert_service.advance_alert_status(alert.alert_id, "SENT")
        self.assertEqual(moved.status, "SENT")

    def test_advance_status_rejects_backward_move(self):
        alert = self._new_alert()
        alert_service.advance_alert_status(alert.alert_id, "SENT")

        with self.assertRaises(AlertLifecycleError):
            alert_service.advance_alert_status(alert.alert_id, "PROCESSING")

    def test_acknowledged_is_terminal(self):
        alert = self._new_alert()
        alert_service.acknowledge_alert(alert.alert_id)

        with self.assertRaises(AlertLifecycleError):
            alert_service.advance_alert_status(alert.alert_id, "SENT")

    def test_advance_to_acknowledged_uses_acknowledge(self):
        alert = self._new_alert()

        acked = alert_service.advance_alert_status(alert.alert_id, "ACKNOWLEDGED", user_id="ops")

        self.assertEqual(acked.acknowledged_by, "ops")
        self.assertIsNotNone(acked.acknowledged_at)

    def test_create_alert_bypasses_dedup(self):
        self._new_alert()
        self._new_alert(current_stock=1)

        active = db.session.query(Alert).filter_by(product_id="p1", status="NEW").count()
        self.assertEqual(active, 2)

    def test_create_alert_as_acknowledged(self):
        alert = self._new_alert(status="ACKNOWLEDGED")

        self.assertEqual(alert.acknowledged_at, alert.created_at)
        self.assertEqual(alert.acknowledged_by, "system")
        self.assertEqual(alert.alert_metadata, {"source": "manual"})

    def test_create_alert_validates(self):
        with self.assertRaises(ValidationError):
            self._new_alert(alert_type="MEDIUM")
        with self.assertRaises(ValidationError):
            self._new_alert(current_stock=-1)

    def test_list_alerts_newest_first_with_filter(self):
        older = self._new_alert()
        self.clock.advance(minutes=1)
        newer = self._new_alert()
        alert_service.acknowledge_alert(older.alert_id)

        all_ids = [a.alert_id for a in alert_service.list_alerts()]
        new_ids = [a.alert_id for a in alert_service.list_alerts("NEW")]

        self.assertEqual(all_ids, [newer.alert_id, older.alert_id])
        self.assertEqual(new_ids, [newer.alert_id])

    def test_list_alerts_rejects_bad_status(self):
        with self.assertRaises(ValidationError):
            alert_service.list_alerts("DONE")


if __name__ == "__main__":
    unittest.main()
