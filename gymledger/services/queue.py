"""Event Dispatch Queue: fire-and-forget publishing of side-effect jobs.

Each job family (notification, audit, invoice) has its own durable RabbitMQ
queue. Jobs travel as a JSON envelope ``{"job_id", "type", "payload"}``; the
``job_id`` lets handlers skip redeliveries. Publishing never raises: a broker
failure is logged and the job is dropped, the financial state it follows has
already been committed.
"""

from __future__ import annotations

import json
import logging
import uuid
from threading import Lock
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple

import pika
from pika.exceptions import AMQPError

from gymledger.core.config import settings

logger = logging.getLogger(__name__)

NOTIFICATION = "notification"
AUDIT = "audit"
INVOICE = "invoice"

JOB_TYPES = (NOTIFICATION, AUDIT, INVOICE)

ATTEMPT_HEADER = "x-attempt"


def queue_name_for(job_type: str) -> str:
    names = {
        NOTIFICATION: settings.notification_queue_name,
        AUDIT: settings.audit_queue_name,
        INVOICE: settings.invoice_queue_name,
    }
    try:
        return names[job_type]
    except KeyError:
        raise ValueError(f"Unknown job type: {job_type}") from None


def build_envelope(job_type: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "job_id": job_id or str(uuid.uuid4()),
        "type": job_type,
        "payload": payload,
    }


def encode_envelope(envelope: Dict[str, Any]) -> bytes:
    return json.dumps(envelope, default=str).encode("utf-8")


class JobQueue(Protocol):
    def enqueue(self, job_type: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> None: ...


class RabbitJobQueue:
    """Publishes jobs over a lazily opened, reused blocking connection."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.rabbitmq_url
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None
        self._declared: set[str] = set()
        # BlockingConnection is not thread-safe; request threads share one publisher
        self._lock = Lock()

    def _ensure_channel(self):
        if self._connection is None or self._connection.is_closed:
            self._connection = pika.BlockingConnection(pika.URLParameters(self.url))
            self._channel = None
            self._declared.clear()
        if self._channel is None or self._channel.is_closed:
            self._channel = self._connection.channel()
            self._declared.clear()
        return self._channel

    def _publish(self, queue: str, body: bytes) -> None:
        channel = self._ensure_channel()
        if queue not in self._declared:
            channel.queue_declare(queue=queue, durable=True)
            self._declared.add(queue)
        channel.basic_publish(
            exchange="",
            routing_key=queue,
            body=body,
            properties=pika.BasicProperties(
                delivery_mode=2,  # persistent
                content_type="application/json",
                headers={ATTEMPT_HEADER: 1},
            ),
        )

    def enqueue(self, job_type: str, payload: Dict[str, Any], job_id: Optional[str] = None) -> None:
        envelope = build_envelope(job_type, payload, job_id=job_id)
        queue = queue_name_for(job_type)
        body = encode_envelope(envelope)
        with self._lock:
            try:
                self._publish(queue, body)
            except (AMQPError, OSError):
                # one reconnect: the cached connection may have been closed by the broker
                self._connection = None
                try:
                    self._publish(queue, body)
                except (AMQPError, OSError):
                    logger.error(
                        "job_enqueue_failed",
                        extra={"extra": {"event": "job_enqueue_failed", "job_type": job_type,
                                         "job_id": envelope["job_id"], "queue": queue}},
                        exc_info=True,
                    )
                    return
        logger.debug("job_enqueued", extra={"extra": {"job_type": job_type, "job_id": envelope["job_id"]}})

    def close(self) -> None:
        with self._lock:
            if self._connection is not None and self._connection.is_open:
                self._connection.close()
            self._connection = None
            self._channel = None


_default_queue: Optional[RabbitJobQueue] = None


def get_job_queue() -> RabbitJobQueue:
    global _default_queue
    if _default_queue is None:
        _default_queue = RabbitJobQueue()
    return _default_queue


def dispatch(queue: JobQueue, jobs: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
    """Hand post-commit side effects to the queue; a failing job never reaches the caller."""
    for job_type, payload in jobs:
        try:
            queue.enqueue(job_type, payload)
        except Exception:
            logger.error(
                "job_dispatch_failed",
                extra={"extra": {"event": "job_dispatch_failed", "job_type": job_type}},
                exc_info=True,
            )
