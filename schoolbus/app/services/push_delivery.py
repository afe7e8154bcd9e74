"""
Push Delivery Service.

Second phase of notification fan-out. Records are already committed when
this runs; delivery is best-effort and per-recipient:

- gateway outages are retried with exponential backoff behind a circuit
  breaker; a refused recipient is not retried and does not count against
  the circuit
- one recipient's failure never blocks the others or touches the stored
  record's content
- failures are counted in the report and captured in the dead letter queue,
  never raised to the triggering request
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schoolbus.app.core.config import settings
from schoolbus.app.core.reliability import CircuitBreaker, CircuitOpenError, retry_async
from schoolbus.app.db.session import get_session_factory
from schoolbus.app.domain.notifications.events import EmergencyAlert, render_emergency
from schoolbus.app.models.dlq import DeadLetterQueue, DLQStatus
from schoolbus.app.models.notification import Notification, PushStatus
from schoolbus.app.models.user import User

logger = logging.getLogger("schoolbus.push")

PUSH_TASK_NAME = "push_delivery"
TOPIC_TASK_NAME = "topic_broadcast"

# FCM per-message errors that mean "try again later" rather than "bad token"
TRANSIENT_RESULT_ERRORS = {"Unavailable", "InternalServerError"}


class PushSendError(Exception):
    """The gateway did not deliver a send."""


class PushGatewayError(PushSendError):
    """The gateway was unreachable, overloaded or answered with garbage."""


class PushRejectedError(PushSendError):
    """The gateway refused this message, e.g. an unregistered device token."""


class PushReport(BaseModel):
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    topic: Optional[str] = None


class FCMPushSender:
    """
    Firebase Cloud Messaging client over the HTTP API.

    A shared ``httpx.AsyncClient`` may be injected; otherwise a short-lived
    client is opened per send. 5xx, 429 and unreadable replies raise
    ``PushGatewayError``; other 4xx and per-token result errors raise
    ``PushRejectedError``.
    """

    def __init__(
        self,
        gateway_url: str = settings.push_gateway_url,
        server_key: str = settings.push_server_key,
        timeout: float = settings.push_timeout_seconds,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.gateway_url = gateway_url
        self.server_key = server_key
        self.timeout = timeout
        self.client = client

    async def send_to_token(self, token: str, title: str, body: str, data: Dict[str, Any]) -> str:
        return await self._send({"to": token, "notification": {"title": title, "body": body}, "data": data})

    async def send_to_topic(self, topic: str, title: str, body: str, data: Dict[str, Any]) -> str:
        return await self._send(
            {"to": f"/topics/{topic}", "notification": {"title": title, "body": body}, "data": data}
        )

    async def _send(self, message: Dict[str, Any]) -> str:
        if self.client is not None:
            response = await self._post(self.client, message)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._post(client, message)

        status = response.status_code
        if status == 429 or status >= 500:
            raise PushGatewayError(f"Gateway returned {status}")
        if status >= 400:
            raise PushRejectedError(f"Gateway returned {status}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise PushGatewayError("Gateway returned a non-JSON reply") from exc
        if not isinstance(payload, dict):
            raise PushGatewayError("Gateway returned an unexpected reply")

        results = payload.get("results") or [{}]
        if payload.get("failure"):
            error = results[0].get("error", "Unknown gateway error")
            if error in TRANSIENT_RESULT_ERRORS:
                raise PushGatewayError(error)
            raise PushRejectedError(error)

        if "message_id" in payload:
            return str(payload["message_id"])
        return str(results[0].get("message_id", ""))

    async def _post(self, client: httpx.AsyncClient, message: Dict[str, Any]) -> httpx.Response:
        return await client.post(
            self.gateway_url,
            json=message,
            headers={"Authorization": f"key={self.server_key}"},
        )


RETRYABLE_ERRORS = (PushGatewayError, httpx.HTTPError)
DELIVERY_ERRORS = (PushSendError, httpx.HTTPError, CircuitOpenError)


def push_gateway_breaker(
    failure_threshold: int = settings.push_circuit_failure_threshold,
    reset_timeout: float = settings.push_circuit_reset_seconds,
) -> CircuitBreaker:
    """A breaker that trips on gateway outages only, never on refused tokens."""
    return CircuitBreaker(
        failure_threshold=failure_threshold,
        reset_timeout=reset_timeout,
        excluded=(PushRejectedError,),
    )


# Shared across requests so repeated gateway outages open the circuit
push_circuit_breaker = push_gateway_breaker()


class CountingSend:
    """Wraps a sender method and counts the gateway calls made through it."""

    def __init__(self, send):
        self.send = send
        self.calls = 0

    async def __call__(self, *args):
        self.calls += 1
        return await self.send(*args)


class PushDispatcher:
    """Delivers committed notification records and topic broadcasts."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        sender,
        circuit_breaker: CircuitBreaker = push_circuit_breaker,
        max_attempts: int = settings.push_max_attempts,
        backoff_base: float = settings.push_backoff_base_seconds,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.circuit_breaker = circuit_breaker
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    async def _send_with_retry(self, send: CountingSend, *args):
        return await retry_async(
            self.circuit_breaker.call,
            send,
            *args,
            attempts=self.max_attempts,
            base_delay=self.backoff_base,
            retry_on=RETRYABLE_ERRORS,
        )

    def _mark_failed(
        self, db: AsyncSession, notification: Notification, error: Exception, attempts: int
    ) -> None:
        notification.push_status = PushStatus.FAILED
        notification.push_attempts += attempts
        db.add(DeadLetterQueue(
            task_name=PUSH_TASK_NAME,
            target=notification.id,
            error_message=str(error) or type(error).__name__,
            payload={"notification_id": notification.id, "user_id": notification.user_id},
            status=DLQStatus.FAILED,
            attempts=attempts,
        ))

    async def deliver(self, notification_ids: Sequence[str]) -> PushReport:
        """Push every still-pending record in ``notification_ids``."""
        report = PushReport()
        if not notification_ids:
            return report

        async with self.session_factory() as db:
            result = await db.execute(
                select(Notification).where(
                    Notification.id.in_(list(notification_ids)),
                    Notification.push_status == PushStatus.PENDING,
                ).order_by(Notification.created_at, Notification.id)
            )
            notifications: List[Notification] = list(result.scalars().all())

            user_ids = {notification.user_id for notification in notifications}
            tokens_result = await db.execute(
                select(User.id, User.fcm_token).where(User.id.in_(list(user_ids)))
            )
            tokens = {user_id: token for user_id, token in tokens_result.all()}

            for notification in notifications:
                token = tokens.get(notification.user_id)
                if not token:
                    notification.push_status = PushStatus.SKIPPED
                    report.skipped += 1
                    continue

                report.attempted += 1
                data = dict(notification.data or {})
                data["type"] = notification.type.value
                send = CountingSend(self.sender.send_to_token)
                try:
                    await self._send_with_retry(send, token, notification.title, notification.body, data)
                except DELIVERY_ERRORS as exc:
                    self._mark_failed(db, notification, exc, send.calls)
                    report.failed += 1
                    logger.warning(
                        "Push delivery failed",
                        extra={
                            "notification_id": notification.id,
                            "error": str(exc),
                            "retryable": not isinstance(exc, PushRejectedError),
                        },
                    )
                    continue
                except Exception as exc:
                    self._mark_failed(db, notification, exc, send.calls)
                    report.failed += 1
                    logger.exception(
                        "Unexpected push delivery error",
                        extra={"notification_id": notification.id},
                    )
                    continue

                notification.push_status = PushStatus.SENT
                notification.push_attempts += send.calls
                report.delivered += 1

            await db.commit()

        logger.info("Push delivery finished", extra=report.model_dump())
        return report

    async def broadcast(self, alert: EmergencyAlert) -> PushReport:
        """Send an emergency alert to the school's topic."""
        title, body, data = render_emergency(alert)
        data["type"] = alert.kind
        report = PushReport(attempted=1, topic=alert.topic)

        send = CountingSend(self.sender.send_to_topic)
        try:
            await self._send_with_retry(send, alert.topic, title, body, data)
        except Exception as exc:
            report.failed = 1
            async with self.session_factory() as db:
                db.add(DeadLetterQueue(
                    task_name=TOPIC_TASK_NAME,
                    target=alert.topic,
                    error_message=str(exc) or type(exc).__name__,
                    payload={"topic": alert.topic, "title": title, "body": body},
                    status=DLQStatus.FAILED,
                    attempts=send.calls,
                ))
                await db.commit()
            if isinstance(exc, DELIVERY_ERRORS):
                logger.warning("Topic broadcast failed", extra={"topic": alert.topic, "error": str(exc)})
            else:
                logger.exception("Unexpected topic broadcast error", extra={"topic": alert.topic})
            return report

        report.delivered = 1
        return report


def get_push_dispatcher(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> PushDispatcher:
    """FastAPI dependency; tests override it with a recording sender."""
    return PushDispatcher(session_factory=session_factory, sender=FCMPushSender())
