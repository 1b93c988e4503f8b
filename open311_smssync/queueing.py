"""
Job queue used by the transport.

Thin wrapper around a Celery application:
- enqueue(): publish a job on a named queue
- process(): register a consumer for a queue and run a bounded worker pool
- shutdown(): warm shutdown of the worker within a deadline

With QUEUE_EAGER enabled, jobs for queues with a registered consumer run
inline in the publishing thread and no worker is started.
"""

import logging
import threading
from typing import Any, Callable, Optional

from celery import Celery
from celery.exceptions import CeleryError
from kombu.exceptions import KombuError

from open311_smssync.config import Settings
from open311_smssync.errors import QueueError

logger = logging.getLogger(__name__)


def create_celery_app(settings: Settings) -> Celery:
    """Create the Celery application backing the job queue."""
    app = Celery("open311_smssync", broker=settings.BROKER_URL, set_as_current=False)
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        task_ignore_result=True,
        task_always_eager=settings.QUEUE_EAGER,
        task_eager_propagates=True,
        worker_hijack_root_logger=False,
    )
    return app


class JobQueue:
    """Named job queues on top of a Celery application."""

    def __init__(self, app: Celery):
        self.app = app
        self.shutting_down = False
        self._consumers = {}
        self._worker = None
        self._worker_thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobQueue":
        return cls(create_celery_app(settings))

    @property
    def eager(self) -> bool:
        return bool(self.app.conf.task_always_eager)

    def enqueue(self, queue_name: str, payload: dict) -> None:
        """
        Publish a job on the given queue.

        Raises:
            QueueError: the queue is shutting down or the broker rejected the job
        """
        if self.shutting_down:
            raise QueueError(f"Queue is shutting down, cannot enqueue on {queue_name}")

        logger.debug(f"Enqueueing job on {queue_name}")
        try:
            # Registered consumers are applied through their task so eager
            # mode runs them inline; others are sent to the broker by name
            self.app.signature(queue_name, args=(payload,), queue=queue_name).apply_async()
        except (CeleryError, KombuError, OSError) as e:
            logger.error(f"Failed to enqueue job on {queue_name}: {e}")
            raise QueueError(f"Failed to enqueue job on {queue_name}: {e}") from e

        logger.info(f"Job enqueued on {queue_name}")

    def process(self, queue_name: str, concurrency: int, handler: Callable[[dict], Any]) -> None:
        """
        Register `handler` as the consumer of `queue_name`.

        Outside eager mode this also starts a worker with `concurrency`
        threads consuming the queue in the background.
        """
        if queue_name in self._consumers:
            logger.warning(f"Consumer already registered for {queue_name}")
            return

        def consume(payload):
            handler(payload)

        consume.__name__ = f"consume_{queue_name}"
        self._consumers[queue_name] = self.app.task(name=queue_name, shared=False)(consume)
        logger.info(f"Consumer registered: queue={queue_name}, concurrency={concurrency}")

        if self.eager:
            return

        # Pool threads resolve tasks through the default app
        self.app.set_current()
        self.app.set_default()

        self._worker = self.app.WorkController(
            queues=[queue_name],
            concurrency=concurrency,
            pool_cls="threads",
            without_heartbeat=True,
            without_mingle=True,
            without_gossip=True,
        )
        self._worker_thread = threading.Thread(
            target=self._worker.start,
            name=f"smssync-worker-{queue_name}",
            daemon=True,
        )
        self._worker_thread.start()
        logger.info(f"Worker started for {queue_name}")

    def shutdown(self, timeout: Optional[int] = None) -> None:
        """
        Stop accepting jobs and let the worker drain.

        Args:
            timeout: Deadline in milliseconds, None waits forever

        Raises:
            QueueError: the worker did not stop before the deadline
        """
        if self.shutting_down:
            return
        self.shutting_down = True
        logger.info("Shutting down job queue")

        thread = self._worker_thread
        if thread is None:
            return

        if self._worker is not None:
            # stop() blocks while the pool drains, keep it off the caller
            threading.Thread(
                target=self._worker.stop,
                kwargs={"in_sighandler": False},
                daemon=True,
            ).start()

        thread.join(timeout / 1000 if timeout is not None else None)
        if thread.is_alive():
            logger.error(f"Job queue did not shut down within {timeout}ms")
            raise QueueError(f"Job queue did not shut down within {timeout}ms")

        logger.info("Job queue shut down")
