"""
SMSSync synchronization handlers.

The device polls the server and drives outbound messages through
UNKNOWN -> QUEUED -> DELIVERED:
- on_send: messages waiting for the device, one envelope per recipient
- on_sent: the device queued these envelopes for local delivery
- on_queued: envelopes still waiting for a delivery report
- on_delivered: delivery reports from the device

on_receive stores inbound sms once per hash and answers with an auto reply.

See http://smssync.ushahidi.com/developers/ for the device side.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Tuple

from open311_smssync import correlation
from open311_smssync.context import SmsSyncContext
from open311_smssync.metrics import record_transition
from open311_smssync.schemas import Envelope, Message, MessageType, State

logger = logging.getLogger(__name__)


def _envelopes(messages: Iterable[Message]) -> List[Envelope]:
    return [
        Envelope(to=to, message=message.body, uuid=correlation.encode(message.id, to))
        for message in messages
        for to in message.to
    ]


def _uuids(messages: Iterable[Message]) -> List[str]:
    return [
        correlation.encode(message.id, to)
        for message in messages
        for to in message.to
    ]


def _decode_ids(uuids: Iterable[Optional[str]]) -> List[str]:
    """Decode correlation ids, dropping invalid ones and duplicates."""
    ids = []
    for uuid in uuids:
        message_id = correlation.decode(uuid)
        if message_id and message_id not in ids:
            ids.append(message_id)
    return ids


def _transition(ctx: SmsSyncContext, ids: List[str], state: State) -> List[Message]:
    """
    Move the transport's sms with the given ids into `state`.

    Updates are independent and run in parallel; the first failure is
    raised once all of them have finished.
    """
    if not ids:
        return []

    messages = ctx.store.find(
        type=MessageType.SMS,
        transport=ctx.settings.TRANSPORT,
        ids=ids,
    )
    logger.debug(f"Found {len(messages)} of {len(ids)} messages to mark {state.value}")
    if not messages:
        return []

    for message in messages:
        message.state = state

    workers = max(1, min(ctx.settings.CONCURRENCY, len(messages)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(ctx.store.save, message) for message in messages]
    saved = [future.result() for future in futures]

    record_transition(state.value, len(saved))
    logger.info(f"Marked {len(saved)} messages {state.value}")
    return saved


def on_receive(ctx: SmsSyncContext, sms: dict) -> Tuple[Envelope, Message]:
    """
    Store an inbound sms and build the auto reply for its sender.

    Args:
        ctx: Transport context
        sms: Dict with from, sent_to, message and hash

    Returns:
        Tuple of (reply envelope, stored message)
    """
    settings = ctx.settings
    sender = sms.get("from") or settings.FROM
    text = sms.get("message")
    hash = sms.get("hash")

    logger.info(f"Receiving sms: from={sender}, hash={hash}")

    message = ctx.store.find_by_hash(hash)
    if message is None:
        message, is_duplicate = ctx.store.create(
            Message.inbound(
                from_msisdn=sender,
                to=sms.get("sent_to") or settings.TO,
                text=text,
                hash=hash,
                transport=settings.TRANSPORT,
                queue_name=settings.QUEUE_NAME,
            )
        )
        if not is_duplicate:
            record_transition(State.RECEIVED.value)
    else:
        logger.info(f"Duplicate sms received: hash={hash}, id={message.id}")

    reply = Envelope(
        to=sender,
        message=settings.REPLY,
        uuid=correlation.encode(message.id, sender),
    )

    # Notify the application about the received sms
    if ctx.queue is not None and settings.RECEIVE_QUEUE:
        ctx.queue.enqueue(settings.RECEIVE_QUEUE, message.to_job())

    return reply, message


def on_send(ctx: SmsSyncContext) -> List[Envelope]:
    """
    List envelopes the device should send.

    Messages stay UNKNOWN until the device acknowledges them in on_sent,
    so an unacknowledged message is offered again on the next poll.
    """
    messages = ctx.store.find(
        type=MessageType.SMS,
        transport=ctx.settings.TRANSPORT,
        state=State.UNKNOWN,
    )
    envelopes = _envelopes(messages)
    logger.info(f"Providing {len(envelopes)} sms from {len(messages)} messages")
    return envelopes


def on_sent(ctx: SmsSyncContext, queued: Iterable[str]) -> List[str]:
    """
    Mark messages the device queued for delivery as QUEUED.

    Returns:
        Correlation ids of the updated messages, built from their current
        recipients
    """
    ids = _decode_ids(queued or [])
    logger.info(f"Device queued {len(ids)} messages")
    messages = _transition(ctx, ids, State.QUEUED)
    return _uuids(messages)


def on_queued(ctx: SmsSyncContext) -> List[str]:
    """Correlation ids of messages waiting for a delivery report."""
    messages = ctx.store.find(
        type=MessageType.SMS,
        transport=ctx.settings.TRANSPORT,
        state=State.QUEUED,
    )
    return _uuids(messages)


def on_delivered(ctx: SmsSyncContext, delivered: Iterable) -> List[Message]:
    """
    Mark reported messages as DELIVERED.

    Args:
        ctx: Transport context
        delivered: Delivery reports, dicts or objects carrying `uuid`

    Returns:
        The updated messages
    """
    uuids = []
    for report in delivered or []:
        if isinstance(report, dict):
            uuids.append(report.get("uuid"))
        else:
            uuids.append(getattr(report, "uuid", None))

    ids = _decode_ids(uuids)
    logger.info(f"Device reported {len(ids)} messages delivered")
    return _transition(ctx, ids, State.DELIVERED)
