"""Session event notifier.

Publishes session lifecycle events to the agent platform's webhook.
Delivery is fire-and-forget: the payload is built synchronously from the
session snapshot and POSTed from a background task, so a slow or failing
endpoint never delays or fails the caller.

Each request is signed with ``Signature: base64(HMAC-SHA256(body))`` and
carries an RFC 3339 ``Timestamp`` header.
"""

import asyncio
import base64
import hashlib
import hmac
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import httpx
import structlog

from acp_checkout.domain.entities import Session

logger = structlog.get_logger()


class SessionEventType(str, Enum):
    """Types of events published about a session."""

    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"


class EventNotifier(Protocol):
    """Notifier interface. ``publish`` must never raise."""

    async def publish(self, event_type: SessionEventType, session: Session) -> None: ...


def build_event_payload(event_type: SessionEventType, session: Session) -> dict[str, Any]:
    """Build the notification payload for a session.

    Args:
        event_type: Event being published.
        session: Session snapshot.

    Returns:
        JSON-ready payload.
    """
    data = session.to_dict()
    return {
        "event_type": event_type.value,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "checkout_session_id": session.id,
        "status": data.get("status"),
        "order": data.get("order"),
        "currency": data.get("currency"),
        "totals": data.get("totals", []),
        "line_items": data.get("line_items", []),
        "links": data.get("links", []),
    }


def sign_body(body: bytes, secret: str) -> str:
    """Compute the base64 HMAC-SHA256 signature of a body.

    Args:
        body: Raw request body.
        secret: Shared signing secret.

    Returns:
        Base64-encoded signature.
    """
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class HttpEventNotifier:
    """Delivers session events over HTTP with httpx."""

    def __init__(
        self,
        webhook_url: str,
        webhook_secret: str = "",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize notifier.

        Args:
            webhook_url: Destination URL; delivery is skipped when empty.
            webhook_secret: HMAC secret; requests are unsigned when empty.
            timeout: Request timeout in seconds.
            client: HTTP client to use instead of an owned one.
        """
        self.webhook_url = webhook_url.strip()
        self.webhook_secret = webhook_secret.strip()
        self._owns_client = client is None
        if client is None and self.webhook_url:
            client = httpx.AsyncClient(timeout=timeout)
        self._client = client
        self._pending: set[asyncio.Task] = set()

    async def publish(self, event_type: SessionEventType, session: Session) -> None:
        """Schedule delivery of a session event.

        Args:
            event_type: Event being published.
            session: Session snapshot.
        """
        if not self.webhook_url:
            logger.debug(
                "Notifier webhook URL not configured, skipping event",
                event_type=event_type.value,
                session_id=session.id,
            )
            return

        payload = build_event_payload(event_type, session)
        task = asyncio.create_task(self._deliver(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, payload: dict[str, Any]) -> bool:
        body = json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "Timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.webhook_secret:
            headers["Signature"] = sign_body(body, self.webhook_secret)

        try:
            response = await self._client.post(self.webhook_url, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(
                "Session event delivery error",
                event_type=payload["event_type"],
                session_id=payload["checkout_session_id"],
                error=str(e),
            )
            return False

        if response.is_success:
            logger.info(
                "Session event delivered",
                event_type=payload["event_type"],
                session_id=payload["checkout_session_id"],
                status_code=response.status_code,
            )
            return True

        logger.warning(
            "Session event delivery failed",
            event_type=payload["event_type"],
            session_id=payload["checkout_session_id"],
            status_code=response.status_code,
            response_body=response.text[:200],
        )
        return False

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Drain pending deliveries and close the HTTP client."""
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
