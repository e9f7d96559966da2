"""E-mail queue: enqueue rows, drain them through the Resend API with retries.

The queue is a plain table; producers insert pending rows and the worker
(`python -m gritful.workers.email_queue`) drains due rows in small batches.
Failed sends are rescheduled with a fixed backoff until max_retries is hit.
"""
from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select, insert, update

from gritful.core.config import settings
from gritful.core.database import get_db_session, challenges, challenge_participants, email_queue
from gritful.core.dates import utc_now
from gritful.core.errors import NotFoundError, PermissionError, ValidationError
from gritful.core.logging import log_event

# Minutes to wait before retry N (indexed by the retry count before the failure)
RETRY_BACKOFF_MINUTES = [5, 15, 45]


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class EmailSendError(Exception):
    """Provider rejected the message or could not be reached."""


class ResendSender:
    """Sends a rendered message through the Resend HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        from_address: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.api_url = api_url or settings.RESEND_API_URL
        self.from_address = from_address or settings.EMAIL_FROM
        self.timeout = timeout or settings.EMAIL_SEND_TIMEOUT_SECONDS
        self.transport = transport

    async def send(self, message: EmailMessage) -> str:
        """Send one message. Returns the provider message id."""
        if not self.api_key:
            raise EmailSendError("RESEND_API_KEY is not configured")

        body = {
            "from": self.from_address,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "headers": message.headers,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Resend request failed: {exc}") from exc

        if response.status_code >= 400:
            raise EmailSendError(f"Resend API error {response.status_code}: {response.text[:300]}")
        try:
            payload = response.json()
        except ValueError:
            # Accepted, but the body carries no message id
            return ""
        return payload.get("id", "") if isinstance(payload, dict) else ""


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def _action_url(data: Dict[str, Any]) -> str:
    return data.get("action_url") or f"{settings.APP_URL}/challenges/{data.get('challenge_id')}/updates"


def render_html(template_name: str, data: Dict[str, Any]) -> str:
    esc = {key: html.escape(str(value)) for key, value in data.items() if value is not None}
    if template_name == "challenge_update":
        subject = f'<h3 style="color: #111827; margin-bottom: 8px;">{esc["subject"]}</h3>' if esc.get("subject") else ""
        return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Challenge Update</title></head>
<body style="font-family: Inter, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2>Challenge Update</h2>
  <p>Hello {esc.get("username", "there")}!</p>
  <p><strong>{esc.get("sender_name", "Challenge Creator")}</strong> sent an update for <strong>{esc.get("challenge_name", "")}</strong>:</p>
  {subject}
  <div style="border-left: 4px solid #10b981; padding: 16px; margin: 20px 0;">
    <p style="margin: 0; white-space: pre-wrap;">{esc.get("message", "")}</p>
  </div>
  <a href="{html.escape(_action_url(data))}">View Update</a>
  <p style="color: #9ca3af; font-size: 12px;">You received this email because you're participating in a challenge on Gritful.
  <a href="{esc.get("unsubscribe_url", "")}">Unsubscribe from challenge updates</a></p>
</body>
</html>"""
    return f"<p>{esc.get('message', 'No content')}</p>"


def render_text(template_name: str, data: Dict[str, Any]) -> str:
    if template_name == "challenge_update":
        subject = f"{data['subject']}\n\n" if data.get("subject") else ""
        return (
            "Challenge Update\n\n"
            f"Hello {data.get('username', 'there')}!\n\n"
            f"{data.get('sender_name', 'Challenge Creator')} sent an update for {data.get('challenge_name', '')}:\n\n"
            f"{subject}{data.get('message', '')}\n\n"
            f"View Update: {_action_url(data)}\n\n"
            "---\n"
            "You received this email because you're participating in a challenge on Gritful.\n"
            f"Unsubscribe: {data.get('unsubscribe_url', '')}"
        )
    return data.get("message") or "No content"


# ---------------------------------------------------------------------------
# Queue operations
# ---------------------------------------------------------------------------

def _insert_email_row(
    session,
    *,
    user_id: str,
    recipient_email: str,
    subject: str,
    template_name: str,
    template_data: Dict[str, Any],
    email_type: str,
    scheduled_for: datetime,
    max_retries: int,
) -> int:
    result = session.execute(
        insert(email_queue).values(
            user_id=user_id,
            email_type=email_type,
            recipient_email=recipient_email,
            subject=subject,
            template_name=template_name,
            template_data=template_data,
            status="pending",
            retry_count=0,
            max_retries=max_retries,
            scheduled_for=scheduled_for,
            created_at=utc_now(),
        )
    )
    return result.inserted_primary_key[0]


def enqueue_email(
    *,
    user_id: str,
    recipient_email: str,
    subject: str,
    template_name: str,
    template_data: Dict[str, Any],
    email_type: Optional[str] = None,
    scheduled_for: Optional[datetime] = None,
    max_retries: Optional[int] = None,
) -> int:
    """Insert a pending email. Returns the queue row id."""
    with get_db_session() as session:
        return _insert_email_row(
            session,
            user_id=user_id,
            recipient_email=recipient_email,
            subject=subject,
            template_name=template_name,
            template_data=template_data,
            email_type=email_type or template_name,
            scheduled_for=scheduled_for or utc_now(),
            max_retries=max_retries if max_retries is not None else settings.EMAIL_MAX_RETRIES,
        )


def _build_message(row) -> EmailMessage:
    data = row.template_data or {}
    return EmailMessage(
        to=row.recipient_email,
        subject=row.subject,
        html=render_html(row.template_name, data),
        text=render_text(row.template_name, data),
        headers={"List-Unsubscribe": f"<{data['unsubscribe_url']}>"} if data.get("unsubscribe_url") else {},
    )


def next_retry_delay(retry_count: int) -> timedelta:
    return timedelta(minutes=RETRY_BACKOFF_MINUTES[min(retry_count, len(RETRY_BACKOFF_MINUTES) - 1)])


async def process_email_queue(
    *,
    batch_size: Optional[int] = None,
    now: Optional[datetime] = None,
    sender: Optional[ResendSender] = None,
) -> BatchResult:
    """Drain due pending emails, oldest first. One failing email never stops the batch."""
    moment = now or utc_now()
    limit = batch_size or settings.EMAIL_QUEUE_BATCH_SIZE
    sender = sender or ResendSender()
    result = BatchResult()

    with get_db_session() as session:
        rows = session.execute(
            select(email_queue)
            .where(email_queue.c.status == "pending", email_queue.c.scheduled_for <= moment)
            .order_by(email_queue.c.created_at, email_queue.c.id)
            .limit(limit)
        ).all()
        ids = [row.id for row in rows]
        if ids:
            session.execute(update(email_queue).where(email_queue.c.id.in_(ids)).values(status="processing"))

    for row in rows:
        try:
            await sender.send(_build_message(row))
        except EmailSendError as exc:
            _record_failure(row, str(exc), moment)
            result.failed += 1
            result.errors.append(f"{row.id}: {exc}")
        except Exception as exc:
            # Unexpected errors are retried like provider failures
            log_event(
                "error",
                "email.send_crashed",
                user_id=row.user_id,
                event_type="email_send",
                error_code="email_send_crashed",
                extra={"email_id": row.id, "error_message": repr(exc)},
            )
            _record_failure(row, repr(exc), moment)
            result.failed += 1
            result.errors.append(f"{row.id}: {exc!r}")
        else:
            with get_db_session() as session:
                session.execute(
                    update(email_queue).where(email_queue.c.id == row.id).values(status="sent", sent_at=utc_now())
                )
            result.succeeded += 1
            log_event("info", "email.sent", user_id=row.user_id, event_type="email_sent", extra={"email_id": row.id})
        result.processed += 1

    if result.processed:
        log_event(
            "info",
            "email.batch_complete",
            event_type="email_batch",
            extra={"succeeded": result.succeeded, "failed": result.failed},
        )
    return result


def _record_failure(row, error: str, moment: datetime) -> None:
    retry_count = row.retry_count + 1
    with get_db_session() as session:
        if retry_count < row.max_retries:
            scheduled_for = moment + next_retry_delay(row.retry_count)
            session.execute(
                update(email_queue)
                .where(email_queue.c.id == row.id)
                .values(status="pending", retry_count=retry_count, scheduled_for=scheduled_for, error_message=error[:500])
            )
            log_event(
                "warning",
                "email.retry_scheduled",
                user_id=row.user_id,
                event_type="email_retry",
                error_code="email_send_failed",
                extra={"email_id": row.id, "retry_count": retry_count, "scheduled_for": scheduled_for.isoformat()},
            )
        else:
            session.execute(
                update(email_queue)
                .where(email_queue.c.id == row.id)
                .values(status="failed", retry_count=retry_count, failed_at=utc_now(), error_message=error[:500])
            )
            log_event(
                "error",
                "email.failed",
                user_id=row.user_id,
                event_type="email_failed",
                error_code="email_send_failed",
                extra={"email_id": row.id, "retry_count": retry_count},
            )


def send_challenge_update(
    *,
    challenge_id: str,
    sender_user_id: str,
    message: str,
    subject: Optional[str] = None,
    recipient_user_ids: Optional[List[str]] = None,
) -> int:
    """Queue a creator update for every other active participant. Returns the email count."""
    with get_db_session() as session:
        challenge = session.execute(select(challenges).where(challenges.c.id == challenge_id)).first()
        if not challenge:
            raise NotFoundError("Challenge not found")
        if challenge.creator_id != sender_user_id:
            raise PermissionError("Only the challenge creator can send updates")

        query = select(challenge_participants).where(
            challenge_participants.c.challenge_id == challenge_id,
            challenge_participants.c.status == "active",
            challenge_participants.c.user_id != sender_user_id,
        )
        if recipient_user_ids:
            query = query.where(challenge_participants.c.user_id.in_(recipient_user_ids))
        participants = session.execute(query).all()
        if recipient_user_ids and not participants:
            raise ValidationError("None of the selected users are active participants")

        sender = session.execute(
            select(challenge_participants.c.display_name).where(
                challenge_participants.c.challenge_id == challenge_id,
                challenge_participants.c.user_id == sender_user_id,
            )
        ).first()
        sender_name = (sender.display_name if sender else None) or "Challenge Creator"

        count = 0
        now = utc_now()
        for participant in participants:
            if not participant.email:
                continue
            _insert_email_row(
                session,
                user_id=participant.user_id,
                recipient_email=participant.email,
                subject=f"Update from {challenge.name}" if not subject else subject,
                template_name="challenge_update",
                template_data={
                    "username": participant.display_name or "there",
                    "sender_name": sender_name,
                    "challenge_name": challenge.name,
                    "challenge_id": challenge_id,
                    "subject": subject,
                    "message": message,
                    "unsubscribe_url": f"{settings.APP_URL}/settings/notifications",
                },
                email_type="challenge_update",
                scheduled_for=now,
                max_retries=settings.EMAIL_MAX_RETRIES,
            )
            count += 1

    log_event(
        "info",
        "challenge.update_queued",
        user_id=sender_user_id,
        challenge_id=challenge_id,
        event_type="challenge_update",
        extra={"email_count": count},
    )
    return count
