from __future__ import annotations

import logging
from typing import List

import httpx

from questlog.domain.errors import InvalidQuestData
from questlog.domain.models.sync import SyncMessage
from questlog.domain.repositories import MessageHandler, QuestTransport
from questlog.infrastructure.resilient_http import CircuitOpenError, get_json_with_retry, post_json_with_retry


logger = logging.getLogger(__name__)


class HttpRelayTransport(QuestTransport):
    """Socket stand-in backed by an HTTP relay.

    ``send`` posts one wire message to the channel; ``poll`` fetches every
    message after the last seen cursor and hands it to the registered
    handlers. Delivery is fire-and-forget: a message that cannot be posted is
    logged and dropped, and the resync protocol recovers the gap.

    The relay authenticates each poster by its bearer token and returns rows
    shaped ``{"sender": <client id>, "message": <wire message>}``. Only that
    relay-set sender is trusted; the one written into the payload by the
    posting client is overwritten.
    """

    def __init__(
        self,
        base_url: str,
        *,
        channel: str = "quests",
        token: str | None = None,
        timeout: float = 3.0,
        retries: int = 1,
        backoff_seconds: float = 0.2,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.channel = str(channel)
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self._handlers: List[MessageHandler] = []
        self._cursor = 0
        self._closed = False

    @property
    def cursor(self) -> int:
        return self._cursor

    def _path(self) -> str:
        return f"/channels/{self.channel}/messages"

    def send(self, message: SyncMessage) -> None:
        if self._closed:
            return
        try:
            post_json_with_retry(
                self.client,
                self._path(),
                payload=message.to_wire(),
                headers=self._headers,
                retries=self._retries,
                backoff_seconds=self._backoff_seconds,
            )
        except (httpx.HTTPError, CircuitOpenError) as exc:
            logger.warning(
                "Relay send failed; message dropped",
                extra={"quest_id": message.quest_id, "message_type": message.type.value, "error": str(exc)},
            )

    def on_message(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def poll(self) -> int:
        """Deliver pending relay messages to handlers and return how many were delivered."""

        if self._closed:
            return 0
        try:
            payload = get_json_with_retry(
                self.client,
                self._path(),
                params={"after": self._cursor},
                headers=self._headers,
                retries=self._retries,
                backoff_seconds=self._backoff_seconds,
            )
        except (httpx.HTTPError, CircuitOpenError) as exc:
            logger.warning("Relay poll failed", extra={"channel": self.channel, "error": str(exc)})
            return 0

        rows = payload.get("messages", [])
        delivered = 0
        for row in rows if isinstance(rows, list) else []:
            if not isinstance(row, dict):
                continue
            sender = str(row.get("sender") or "")
            if not sender:
                logger.warning("Skipped relay message without authenticated sender", extra={"channel": self.channel})
                continue
            try:
                message = SyncMessage.from_wire(row.get("message")).with_sender(sender)
            except InvalidQuestData as exc:
                logger.warning("Skipped malformed relay message", extra={"error": str(exc)})
                continue
            for handler in list(self._handlers):
                handler(message)
            delivered += 1

        next_cursor = payload.get("cursor")
        if isinstance(next_cursor, int) and not isinstance(next_cursor, bool):
            self._cursor = max(self._cursor, next_cursor)
        else:
            self._cursor += len(rows) if isinstance(rows, list) else 0
        return delivered

    def close(self) -> None:
        self._closed = True
        if self._owns_client:
            self.client.close()
