"""
SMSSync transport for open311 messages.

Usage:

    transport = SmsSync({"secret": "<your smssync secret>"})
    transport.start()
    transport.queue(Message.outbound(to=["+255700000001"], body="Hello"))

The SMSSync device later polls the HTTP endpoint (see main.py) to pick the
message up and report its delivery.
"""

import logging
import signal
import sys
import threading
from typing import Any, Mapping, Optional

from open311_smssync.config import Settings, get_settings, merge_options
from open311_smssync.context import SmsSyncContext
from open311_smssync.queueing import JobQueue
from open311_smssync.schemas import Message, MessageType, SendMode, State
from open311_smssync.storage import MessageStore

logger = logging.getLogger(__name__)


class SmsSync:
    """Pull transport delivering messages through an SMSSync device."""

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        settings: Optional[Settings] = None,
        store: Optional[MessageStore] = None,
        queue: Optional[JobQueue] = None,
    ):
        self.options = dict(options or {})
        self.settings = settings
        self.store = store
        self._queue = queue
        self.context: Optional[SmsSyncContext] = None

    @property
    def transport(self) -> str:
        return self.init().settings.TRANSPORT

    @property
    def queue_name(self) -> str:
        return self.init().settings.QUEUE_NAME

    @property
    def mode(self) -> SendMode:
        return SendMode.PULL

    def init(self, **options: Any) -> SmsSyncContext:
        """
        Merge options and create the store and job queue.

        Safe to call repeatedly: collaborators that already exist are kept,
        later options are merged over earlier ones.
        """
        if options:
            self.options.update(options)

        if self.context is not None and not options:
            return self.context

        self.settings = merge_options(self.settings or get_settings(), self.options)

        if self.store is None:
            self.store = MessageStore(self.settings.DATABASE_URL)

        if self._queue is None:
            self._queue = JobQueue.from_settings(self.settings)

        self.context = SmsSyncContext(settings=self.settings, store=self.store, queue=self._queue)
        logger.debug(f"SMSSync transport initialized: transport={self.settings.TRANSPORT}")
        return self.context

    def queue(self, message: Message) -> None:
        """
        Queue a message for sending through the device.

        The message is persisted by the worker; this never touches the store.
        """
        ctx = self.init()
        settings = ctx.settings

        message.transport = settings.TRANSPORT
        message.queue_name = settings.QUEUE_NAME
        message.mode = SendMode.PULL
        message.type = MessageType.SMS
        if not message.from_msisdn:
            message.from_msisdn = settings.FROM

        logger.info(f"Queueing sms: to={message.to}, queue={settings.QUEUE_NAME}")
        ctx.queue.enqueue(settings.QUEUE_NAME, message.to_job())

    def send(self, message: Message) -> dict:
        """
        Send a message.

        A pull transport cannot push to the device; the message is reported
        as sent and handed over when the device polls.
        """
        self.init()

        if message.options.get("fake"):
            return {"message": "success"}

        return {"state": State.SENT}

    def start(self, install_signal_handlers: bool = True) -> None:
        """Register the outbound worker and listen for process termination."""
        ctx = self.init()
        settings = ctx.settings

        ctx.queue.process(settings.QUEUE_NAME, settings.CONCURRENCY, ctx.store.process)

        if install_signal_handlers and threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, self._on_terminate)

    def _on_terminate(self, signum, frame) -> None:
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        logger.info("SIGTERM received, shutting down SMSSync worker")
        try:
            self.stop()
        finally:
            sys.exit(0)

    def stop(self) -> None:
        """
        Gracefully shut the job queue down.

        No-op when the queue was never created or is already shutting down.

        Raises:
            QueueError: the queue did not drain within TIMEOUT
        """
        if self._queue is None or self._queue.shutting_down:
            return

        timeout = self.settings.TIMEOUT if self.settings is not None else None
        self._queue.shutdown(timeout)
