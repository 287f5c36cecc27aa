from __future__ import annotations

import enum
import functools
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pika
from pika.exceptions import AMQPConnectionError
from sqlalchemy.orm import Session

from gymledger.core.config import settings
from gymledger.core.db import SessionLocal
from gymledger.core.logging import init_logging
from gymledger.services import queue as jobs
from gymledger.services.audit import handle_audit_job
from gymledger.services.invoices import handle_invoice_job
from gymledger.services.notifications import handle_notification_job

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Optional[str], Dict[str, Any], jobs.JobQueue], None]


class Outcome(str, enum.Enum):
    DONE = "done"
    RETRY = "retry"
    DEAD = "dead"  # parked in <queue>.dead for operator review
    DROPPED = "dropped"


@dataclass(frozen=True)
class JobFamily:
    job_type: str
    queue: str
    handler: Handler
    retain_exhausted: bool

    @property
    def retry_queue(self) -> str:
        return f"{self.queue}.retry"

    @property
    def dead_queue(self) -> str:
        return f"{self.queue}.dead"


def job_families() -> List[JobFamily]:
    return [
        # best effort: logged and dropped once retries are exhausted
        JobFamily(jobs.NOTIFICATION, settings.notification_queue_name, handle_notification_job, retain_exhausted=False),
        JobFamily(jobs.AUDIT, settings.audit_queue_name, handle_audit_job, retain_exhausted=True),
        JobFamily(jobs.INVOICE, settings.invoice_queue_name, handle_invoice_job, retain_exhausted=True),
    ]


def retry_delay_ms(attempt: int, base_ms: Optional[int] = None) -> int:
    """Exponential backoff before retry number ``attempt`` (1-based): base, 2*base, 4*base..."""
    base = settings.job_backoff_ms if base_ms is None else base_ms
    return base * (2 ** (max(attempt, 1) - 1))


def run_job(
    family: JobFamily,
    body: bytes,
    attempt: int,
    publisher: jobs.JobQueue,
    session_factory: Callable[[], Session] = SessionLocal,
    max_attempts: Optional[int] = None,
) -> Outcome:
    max_attempts = max_attempts or settings.job_max_attempts

    try:
        envelope = json.loads(body.decode("utf-8"))
        payload = envelope["payload"]
        job_id = envelope.get("job_id")
    except (UnicodeDecodeError, ValueError, KeyError, TypeError):
        logger.error("job_malformed", extra={"extra": {"queue": family.queue, "body": body[:200].decode("utf-8", "replace")}})
        return Outcome.DEAD if family.retain_exhausted else Outcome.DROPPED

    db = session_factory()
    try:
        family.handler(db, job_id, payload, publisher)
        return Outcome.DONE
    except Exception:
        db.rollback()
        exhausted = attempt >= max_attempts
        logger.error(
            "job_failed",
            extra={"extra": {"event": "job_failed", "job_type": family.job_type, "job_id": job_id,
                             "attempt": attempt, "max_attempts": max_attempts, "exhausted": exhausted}},
            exc_info=True,
        )
        if not exhausted:
            return Outcome.RETRY
        return Outcome.DEAD if family.retain_exhausted else Outcome.DROPPED
    finally:
        db.close()


class FamilyConsumer:
    """Consumes one job family with at most ``concurrency`` jobs in flight.

    Jobs run on a thread pool; acks and re-publishes are marshalled back to
    the connection thread because pika's BlockingConnection is single-threaded.
    """

    def __init__(self, connection: pika.BlockingConnection, family: JobFamily, publisher: jobs.JobQueue, concurrency: int):
        self.connection = connection
        self.family = family
        self.publisher = publisher
        self.executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"{family.job_type}-worker")

        self.channel = connection.channel()
        self.channel.queue_declare(queue=family.queue, durable=True)
        self.channel.queue_declare(
            queue=family.retry_queue,
            durable=True,
            arguments={"x-dead-letter-exchange": "", "x-dead-letter-routing-key": family.queue},
        )
        self.channel.queue_declare(queue=family.dead_queue, durable=True)
        self.channel.basic_qos(prefetch_count=concurrency)
        self.channel.basic_consume(queue=family.queue, on_message_callback=self.on_message)

    def on_message(self, ch, method, properties, body: bytes) -> None:
        attempt = int((properties.headers or {}).get(jobs.ATTEMPT_HEADER, 1))
        self.executor.submit(self._work, method.delivery_tag, body, attempt)

    def _work(self, delivery_tag: int, body: bytes, attempt: int) -> None:
        try:
            outcome = run_job(self.family, body, attempt, self.publisher)
        except Exception:
            # the delivery must still be settled or it stays unacked on the channel
            logger.error("job_run_crashed", extra={"extra": {"queue": self.family.queue, "attempt": attempt}}, exc_info=True)
            outcome = Outcome.RETRY
        self.connection.add_callback_threadsafe(functools.partial(self._settle, delivery_tag, body, attempt, outcome))

    def _settle(self, delivery_tag: int, body: bytes, attempt: int, outcome: Outcome) -> None:
        if outcome is Outcome.RETRY:
            delay = retry_delay_ms(attempt)
            self._republish(self.family.retry_queue, body, attempt + 1, expiration=str(delay))
            logger.info("job_retry_scheduled", extra={"extra": {"queue": self.family.queue, "attempt": attempt + 1, "delay_ms": delay}})
        elif outcome is Outcome.DEAD:
            self._republish(self.family.dead_queue, body, attempt)
            logger.warning("job_dead_lettered", extra={"extra": {"queue": self.family.dead_queue, "attempt": attempt}})
        elif outcome is Outcome.DROPPED:
            logger.warning("job_dropped", extra={"extra": {"queue": self.family.queue, "attempt": attempt}})

        # ack after the re-publish so a crash in between redelivers instead of losing the job
        self.channel.basic_ack(delivery_tag=delivery_tag)

    def _republish(self, queue: str, body: bytes, attempt: int, expiration: Optional[str] = None) -> None:
        self.channel.basic_publish(
            exchange="",
            routing_key=queue,
            body=body,
            properties=pika.BasicProperties(
                delivery_mode=2,  # persistent
                content_type="application/json",
                headers={jobs.ATTEMPT_HEADER: attempt},
                expiration=expiration,
            ),
        )

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)


def _connect_rabbitmq_with_retry(max_attempts: int = 30, sleep_seconds: float = 1.0):
    params = pika.URLParameters(settings.rabbitmq_url)
    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return pika.BlockingConnection(params)
        except AMQPConnectionError as e:
            last_exc = e
            logger.warning(f"RabbitMQ connection failed (attempt {attempt}/{max_attempts}): {e}")
            time.sleep(sleep_seconds)
    raise last_exc  # type: ignore[misc]


def main() -> None:
    init_logging("gymledger-worker", settings.log_level)

    connection = _connect_rabbitmq_with_retry()
    publisher = jobs.RabbitJobQueue()
    consumers = [
        FamilyConsumer(connection, family, publisher, settings.worker_concurrency) for family in job_families()
    ]
    logger.info(
        "worker started",
        extra={"extra": {"queues": [c.family.queue for c in consumers], "concurrency": settings.worker_concurrency}},
    )

    try:
        while True:
            connection.process_data_events(time_limit=1)
    except KeyboardInterrupt:
        logger.info("worker stopping")
    finally:
        for consumer in consumers:
            consumer.shutdown()
        # flush acks queued by the last finished jobs
        if connection.is_open:
            connection.process_data_events(time_limit=0)
            connection.close()
        publisher.close()


if __name__ == "__main__":
    main()
