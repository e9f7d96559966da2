import asyncio
import json
import sys
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from gritful.core.database import email_queue, get_db_session
from gritful.core.errors import PermissionError
from gritful.features.challenges.service import ChallengeService
from gritful.features.email.queue import (
    ResendSender,
    enqueue_email,
    next_retry_delay,
    process_email_queue,
    render_html,
    render_text,
    send_challenge_update,
)
from gritful.models.challenge import ChallengeCreate

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _sender(status_code=200, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if status_code >= 400:
            return httpx.Response(status_code, text="provider unavailable")
        return httpx.Response(status_code, json={"id": "msg_123"})

    return ResendSender(api_key="re_test", transport=httpx.MockTransport(handler))


def _row(email_id):
    with get_db_session() as session:
        return session.execute(select(email_queue).where(email_queue.c.id == email_id)).first()


def _enqueue(**overrides):
    payload = {
        "user_id": "bob",
        "recipient_email": "bob@example.com",
        "subject": "Hello",
        "template_name": "challenge_update",
        "template_data": {"message": "Keep going", "challenge_name": "January Grit", "challenge_id": "c1"},
        "scheduled_for": NOW,
    }
    payload.update(overrides)
    return enqueue_email(**payload)


def test_successful_send_marks_row_sent():
    calls = []
    email_id = _enqueue()

    result = asyncio.run(process_email_queue(now=NOW, sender=_sender(calls=calls)))

    assert result.processed == 1
    assert result.succeeded == 1
    assert _row(email_id).status == "sent"
    body = json.loads(calls[0].content)
    assert body["to"] == "bob@example.com"
    assert calls[0].headers["Authorization"] == "Bearer re_test"


def test_future_rows_are_not_due():
    _enqueue(scheduled_for=NOW + timedelta(hours=1))
    result = asyncio.run(process_email_queue(now=NOW, sender=_sender()))
    assert result.processed == 0


def test_failures_back_off_then_give_up():
    email_id = _enqueue(max_retries=3)
    failing = _sender(status_code=500)

    first = asyncio.run(process_email_queue(now=NOW, sender=failing))
    assert first.failed == 1
    row = _row(email_id)
    assert row.status == "pending"
    assert row.retry_count == 1
    assert row.scheduled_for == (NOW + timedelta(minutes=5)).replace(tzinfo=None)

    # Not due again until the backoff has elapsed
    assert asyncio.run(process_email_queue(now=NOW + timedelta(minutes=4), sender=failing)).processed == 0

    second_at = NOW + timedelta(minutes=5)
    asyncio.run(process_email_queue(now=second_at, sender=failing))
    row = _row(email_id)
    assert row.retry_count == 2
    assert row.scheduled_for == (second_at + timedelta(minutes=15)).replace(tzinfo=None)

    asyncio.run(process_email_queue(now=second_at + timedelta(minutes=15), sender=failing))
    row = _row(email_id)
    assert row.status == "failed"
    assert row.retry_count == 3
    assert "500" in row.error_message


def test_missing_api_key_counts_as_failure():
    email_id = _enqueue()
    result = asyncio.run(process_email_queue(now=NOW, sender=ResendSender(api_key="")))
    assert result.failed == 1
    assert "RESEND_API_KEY" in _row(email_id).error_message


def test_one_failure_does_not_stop_the_batch():
    _enqueue(recipient_email="bad@example.com")
    _enqueue(recipient_email="good@example.com")

    def handler(request):
        if json.loads(request.content)["to"] == "bad@example.com":
            return httpx.Response(422, text="invalid recipient")
        return httpx.Response(200, json={"id": "ok"})

    sender = ResendSender(api_key="re_test", transport=httpx.MockTransport(handler))
    result = asyncio.run(process_email_queue(now=NOW, sender=sender))
    assert (result.processed, result.succeeded, result.failed) == (2, 1, 1)


def test_backoff_schedule():
    assert next_retry_delay(0) == timedelta(minutes=5)
    assert next_retry_delay(1) == timedelta(minutes=15)
    assert next_retry_delay(2) == timedelta(minutes=45)
    assert next_retry_delay(9) == timedelta(minutes=45)


def test_templates_escape_user_content():
    data = {"message": "<script>alert(1)</script>", "challenge_name": "Grit", "challenge_id": "c1"}
    html_body = render_html("challenge_update", data)
    assert "<script>" not in html_body
    assert "&lt;script&gt;" in html_body
    assert "<script>alert(1)</script>" in render_text("challenge_update", data)


def _challenge_with_members():
    service = ChallengeService()
    challenge = service.create_challenge(
        creator_id="alice",
        data=ChallengeCreate(
            name="January Grit",
            starts_at=date(2025, 1, 1),
            duration_days=10,
            metrics=[{"name": "Run", "type": "boolean", "points": 1}],
        ),
        email="alice@example.com",
        display_name="Alice",
        now=NOW,
    )
    service.join_challenge(challenge_id=challenge["id"], user_id="bob", email="bob@example.com", now=NOW)
    service.join_challenge(challenge_id=challenge["id"], user_id="carol", now=NOW)
    return challenge


def test_challenge_update_queues_one_email_per_reachable_participant():
    challenge = _challenge_with_members()

    count = send_challenge_update(challenge_id=challenge["id"], sender_user_id="alice", message="Halfway there!")
    assert count == 1

    with get_db_session() as session:
        rows = session.execute(select(email_queue)).all()
    assert [row.recipient_email for row in rows] == ["bob@example.com"]
    assert rows[0].subject == "Update from January Grit"
    assert rows[0].template_data["sender_name"] == "Alice"


def test_only_the_creator_sends_updates():
    challenge = _challenge_with_members()
    with pytest.raises(PermissionError):
        send_challenge_update(challenge_id=challenge["id"], sender_user_id="bob", message="hi")


def test_worker_exits_when_queue_disabled(monkeypatch, capsys):
    from gritful.core.config import settings
    from gritful.workers import email_queue as worker

    monkeypatch.setattr(settings, "EMAIL_QUEUE_ENABLED", False)
    monkeypatch.setattr(sys, "argv", ["email_queue", "--once"])
    worker.main()
    assert "disabled" in capsys.readouterr().out


def test_worker_once_processes_a_single_batch(monkeypatch, capsys):
    from gritful.core.config import settings
    from gritful.features.email.queue import BatchResult
    from gritful.workers import email_queue as worker

    seen = []

    async def fake_process(*, batch_size):
        seen.append(batch_size)
        return BatchResult(processed=2, succeeded=2)

    monkeypatch.setattr(settings, "EMAIL_QUEUE_ENABLED", True)
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(worker, "process_email_queue", fake_process)
    monkeypatch.setattr(sys, "argv", ["email_queue", "--once", "--limit", "5"])
    worker.main()

    assert seen == [5]
    assert "Sent: 2" in capsys.readouterr().out


def test_plain_text_success_body_still_marks_rows_sent():
    first = _enqueue(recipient_email="one@example.com")
    second = _enqueue(recipient_email="two@example.com")
    sender = ResendSender(api_key="re_test", transport=httpx.MockTransport(lambda request: httpx.Response(200, text="OK")))

    result = asyncio.run(process_email_queue(now=NOW, sender=sender))

    assert (result.processed, result.succeeded, result.failed) == (2, 2, 0)
    assert {_row(first).status, _row(second).status} == {"sent"}


def test_unexpected_sender_error_reschedules_the_row():
    crashing = _enqueue(recipient_email="crash@example.com")
    healthy = _enqueue(recipient_email="fine@example.com")

    class FlakySender:
        async def send(self, message):
            if message.to == "crash@example.com":
                raise RuntimeError("socket closed")
            return "msg_1"

    result = asyncio.run(process_email_queue(now=NOW, sender=FlakySender()))

    assert (result.processed, result.succeeded, result.failed) == (2, 1, 1)
    row = _row(crashing)
    assert row.status == "pending"
    assert row.retry_count == 1
    assert "socket closed" in row.error_message
    assert _row(healthy).status == "sent"

    with get_db_session() as session:
        stuck = session.execute(select(email_queue).where(email_queue.c.status == "processing")).all()
    assert stuck == []
