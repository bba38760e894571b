"""
Publisher abstraction for the RabbitMQ broker.

Supports an in-memory fallback for tests/local runs and an implementation
that talks to the RabbitMQ HTTP management API.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from urllib.parse import quote

import requests
from pydantic import ValidationError

from newswire.messages import QUEUE_SCHEMAS

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Base class for publish failures."""

    kind = "publish"


class MessageValidationError(PublishError):
    """The message does not match the schema of its queue."""

    kind = "validation"


class TransportError(PublishError):
    """The broker could not be reached or answered with a failure."""

    kind = "transport"


class RoutingError(PublishError):
    """The broker accepted the message but routed it to no queue."""

    kind = "routing"


def validate_message(queue: str, message: dict) -> dict:
    """
    Validate a message against its queue schema and return the JSON payload.
    """
    schema = QUEUE_SCHEMAS.get(queue)
    if schema is None:
        raise MessageValidationError(f"No schema defined for queue: {queue}")
    try:
        model = schema.model_validate(message)
    except ValidationError as exc:
        raise MessageValidationError(
            f"Invalid message for queue {queue!r}: {exc}"
        ) from exc
    return model.model_dump(mode="json", exclude_none=True)


class Publisher(Protocol):
    """Minimal interface for handing work items to the broker."""

    def publish(
        self,
        queue: str,
        message: dict,
        *,
        exchange: Optional[str] = None,
        properties: Optional[dict] = None,
    ) -> bool:
        ...


@dataclass
class PublisherConfig:
    base_url: str = "http://127.0.0.1:15672"
    username: str = "guest"
    password: str = "guest"
    vhost: str = "/"
    exchange: str = "amq.default"
    timeout_seconds: float = 10.0
    dry_run: bool = False


class RabbitMqPublisher:
    """Publishes through the management API (`POST /api/exchanges/.../publish`)."""

    def __init__(
        self,
        config: PublisherConfig,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.session.auth = (config.username, config.password)

    def publish_url(self, exchange: str) -> str:
        base = self.config.base_url.rstrip("/")
        vhost = quote(self.config.vhost, safe="")
        return f"{base}/api/exchanges/{vhost}/{quote(exchange, safe='')}/publish"

    def publish(
        self,
        queue: str,
        message: dict,
        *,
        exchange: Optional[str] = None,
        properties: Optional[dict] = None,
    ) -> bool:
        payload = validate_message(queue, message)

        if self.config.dry_run:
            logger.warning("[SKIP_JOBS] Skipping job to queue %r: %s", queue, payload)
            return True

        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        body = {
            "properties": properties or {},
            "routing_key": queue,
            "payload": encoded,
            "payload_encoding": "base64",
        }
        url = self.publish_url(exchange or self.config.exchange)

        try:
            response = self.session.post(
                url, json=body, timeout=self.config.timeout_seconds
            )
        except requests.RequestException as exc:
            logger.error("[RabbitMQ] Error connecting to %s: %s", url, exc)
            raise TransportError(f"RabbitMQ connection failed: {exc}") from exc

        if not response.ok:
            raise TransportError(
                f"Failed to publish message to queue {queue!r}: "
                f"{response.status_code} {response.reason} - {response.text}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Unexpected publish response for queue {queue!r}: {response.text}"
            ) from exc
        if not isinstance(data, dict) or not isinstance(data.get("routed"), bool):
            raise TransportError(
                f"Unexpected publish response for queue {queue!r}: {data!r}"
            )

        if not data["routed"]:
            raise RoutingError(
                f"Message was not routed to queue {queue!r}. "
                "Check that the queue exists and bindings are correct."
            )
        return True


@dataclass
class InMemoryPublisher:
    """Records validated messages instead of sending them (testing/dev)."""

    published: list[tuple[str, dict]] = field(default_factory=list)
    fail_when: Optional[Callable[[str, dict], Optional[PublishError]]] = None

    def publish(
        self,
        queue: str,
        message: dict,
        *,
        exchange: Optional[str] = None,
        properties: Optional[dict] = None,
    ) -> bool:
        payload = validate_message(queue, message)
        if self.fail_when:
            error = self.fail_when(queue, payload)
            if error is not None:
                raise error
        self.published.append((queue, payload))
        return True

    def messages(self, queue: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.published if name == queue]
