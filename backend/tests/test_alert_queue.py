# Overview: Pytest coverage for the alert request queue and its consumer.

import pytest

from stockwatch.models import Alert, AlertQueueMessage
from stockwatch.services import alert_consumer
from stockwatch.services.alert_consumer import (
    drain_queue,
    parse_alert_request,
    process_alert_request,
    process_batch,
)
from stockwatch.services.alert_service import acknowledge_alert
from stockwatch.services.inventory_service import adjust_stock
from stockwatch.services.ledger_store import get_store
from stockwatch.services.queue_service import (
    AlertQueue,
    QueueError,
    build_alert_request,
)
from stockwatch.validation import ValidationError


def _request(product_id="p1", current_stock=2, min_threshold=5, request_id="r1"):
    return build_alert_request(
        product_id=product_id,
        location_id="main",
        current_stock=current_stock,
        min_threshold=min_threshold,
        request_id=request_id,
    )


@pytest.fixture
def queue(db_session):
    return AlertQueue(get_store(), visibility_timeout=60, max_receives=3, dedup_window=300)


class TestAlertQueue:
    def test_send_requires_typed_message(self, queue):
        with pytest.raises(QueueError):
            queue.send({"payload": {}})

    def test_dedup_key_suppresses_second_send(self, queue, db_session, clock):
        first = queue.send(_request(), group_key="p1", dedup_key="r1")
        clock.advance(seconds=10)
        second = queue.send(_request(), group_key="p1", dedup_key="r1")

        assert first == second
        assert db_session.query(AlertQueueMessage).count() == 1

    def test_dedup_window_expires(self, queue, db_session, clock):
        queue.send(_request(), dedup_key="r1")
        clock.advance(seconds=301)
        queue.send(_request(), dedup_key="r1")

        assert db_session.query(AlertQueueMessage).count() == 2

    def test_group_has_one_message_in_flight(self, queue, clock):
        first = queue.send(_request(request_id="a"), group_key="p1")
        clock.advance(seconds=1)
        second = queue.send(_request(request_id="b"), group_key="p1")
        clock.advance(seconds=1)
        other = queue.send(_request(product_id="p2", request_id="c"), group_key="p2")

        batch = [m.message_id for m in queue.receive(10)]
        assert batch == [first, other]

        queue.ack(first)
        assert [m.message_id for m in queue.receive(10)] == [second]

    def test_unacked_message_redelivered_after_visibility_timeout(self, queue, clock):
        message_id = queue.send(_request())
        assert [m.message_id for m in queue.receive()] == [message_id]
        assert queue.receive() == []

        clock.advance(seconds=61)
        redelivered = queue.receive()

        assert [m.message_id for m in redelivered] == [message_id]
        assert redelivered[0].receive_count == 2

    def test_release_with_delay(self, queue, db_session, clock):
        message_id = queue.send(_request())
        queue.receive()

        queue.release(message_id, "boom", delay_seconds=30)
        assert queue.receive() == []

        clock.advance(seconds=30)
        assert [m.message_id for m in queue.receive()] == [message_id]
        assert db_session.get(AlertQueueMessage, message_id).last_error == "boom"

    def test_delayed_release_holds_back_rest_of_group(self, queue, clock):
        first = queue.send(_request(request_id="a"), group_key="p1")
        clock.advance(seconds=1)
        second = queue.send(_request(request_id="b"), group_key="p1")
        assert [m.message_id for m in queue.receive()] == [first]

        queue.release(first, "boom", delay_seconds=30)
        clock.advance(seconds=1)
        assert queue.receive() == []

        clock.advance(seconds=30)
        assert [m.message_id for m in queue.receive()] == [first]
        queue.ack(first)
        assert [m.message_id for m in queue.receive()] == [second]

    def test_message_parked_dead_after_max_receives(self, queue, db_session, clock):
        message_id = queue.send(_request())
        for _ in range(3):
            assert queue.receive()
            queue.release(message_id, "still failing")

        assert db_session.get(AlertQueueMessage, message_id).status == "DEAD"
        assert queue.receive() == []
        assert queue.stats()["DEAD"] == 1

    def test_stats_counts_every_status(self, queue, clock):
        done = queue.send(_request(request_id="a"), group_key="a")
        clock.advance(seconds=1)
        queue.send(_request(request_id="b"), group_key="b")
        queue.receive(1)
        queue.ack(done)

        assert queue.stats() == {"PENDING": 1, "IN_FLIGHT": 0, "DONE": 1, "DEAD": 0}


class TestConsumer:
    def test_parse_alert_request_validates(self, db_session):
        with pytest.raises(ValidationError):
            parse_alert_request({"product_id": "p1", "current_stock": "x", "min_threshold": 5})
        with pytest.raises(ValidationError):
            parse_alert_request({"product_id": "p1", "current_stock": 1, "min_threshold": 5, "alert_type": "MID"})

        parsed = parse_alert_request({"product_id": "p1", "current_stock": "1", "min_threshold": 5})
        assert parsed["location_id"] == "main"
        assert parsed["alert_type"] == "LOW"

    def test_process_request_creates_then_skips(self, db_session, make_product):
        make_product(min_threshold=5, name="Widget")
        payload = _request()["payload"]

        created = process_alert_request(payload, message_id="m1")
        redelivered = process_alert_request(payload, message_id="m1")

        assert created.status == "created"
        assert redelivered.status == "skipped"
        assert redelivered.alert_id == created.alert_id
        alert = db_session.get(Alert, created.alert_id)
        assert alert.alert_metadata["source"] == "queue"
        assert alert.alert_metadata["product_name"] == "Widget"
        assert alert.alert_metadata["request_id"] == "r1"

    def test_unknown_product_name_falls_back(self, db_session):
        outcome = process_alert_request(_request(product_id="ghost")["payload"])

        alert = db_session.get(Alert, outcome.alert_id)
        assert alert.alert_metadata["product_name"] == "Unknown Product"

    def test_batch_reports_only_failed_items(self, db_session, make_product):
        make_product("p1", min_threshold=5)
        make_product("p2", min_threshold=5)
        messages = [
            ("m1", _request("p1")),
            ("m2", {"type": "ALERT_REQUEST", "payload": {"product_id": "p2"}}),
            ("m3", {"type": "EMAIL_NOTIFICATION", "payload": {}}),
            ("m4", _request("p2", request_id="r4")),
        ]

        result = process_batch(messages)

        assert [o.status for o in result.outcomes] == ["created", "failed", "skipped", "created"]
        assert result.batch_item_failures() == [{"item_identifier": "m2"}]
        assert db_session.query(Alert).filter_by(status="NEW").count() == 2

    def test_unexpected_error_is_isolated(self, db_session, make_product, monkeypatch):
        make_product("p1", min_threshold=5)
        real = alert_consumer.process_alert_request

        def flaky(payload, *, message_id=None):
            if message_id == "m1":
                raise RuntimeError("transient")
            return real(payload, message_id=message_id)

        monkeypatch.setattr(alert_consumer, "process_alert_request", flaky)

        result = process_batch([("m1", _request("p1")), ("m2", _request("p1", request_id="r2"))])

        assert result.failed[0].message_id == "m1"
        assert result.failed[0].error == "transient"
        assert result.succeeded[0].status == "created"


class TestDrainQueue:
    def test_stock_drop_in_queue_mode_then_drain(self, app, db_session, make_product):
        app.config["ALERT_DISPATCH_MODE"] = "queue"
        make_product(stock=10, min_threshold=5)

        result = adjust_stock(product_id="p1", change_amount=-6, reason="Sale")
        assert result["alert"]["message_id"]
        assert db_session.query(Alert).count() == 0

        summary = drain_queue()

        assert summary["processed"] == 1
        assert summary["created"] == 1
        assert db_session.query(Alert).filter_by(product_id="p1", status="NEW").count() == 1
        assert db_session.query(AlertQueueMessage).one().status == "DONE"

    def test_acked_message_is_not_delivered_again(self, app, db_session, make_product, queue):
        make_product(min_threshold=5)
        queue.send(_request(), group_key="p1")
        drain_queue(queue=queue)
        alert = db_session.query(Alert).one()
        acknowledge_alert(alert.alert_id)

        summary = drain_queue(queue=queue)

        assert summary["processed"] == 0
        assert db_session.get(Alert, alert.alert_id).status == "ACKNOWLEDGED"

    def test_failures_are_released_for_retry(self, db_session, make_product, queue):
        make_product(min_threshold=5)
        bad = queue.send({"type": "ALERT_REQUEST", "payload": {"product_id": "p1"}}, group_key="bad")
        queue.send(_request(), group_key="p1")

        summary = drain_queue(queue=queue)

        assert summary["failed"] == 1
        assert summary["created"] == 1
        assert summary["failures"][0]["message_id"] == bad
        row = db_session.get(AlertQueueMessage, bad)
        assert row.status == "PENDING"
        assert row.last_error
