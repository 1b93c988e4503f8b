"""
Correlation ids shared with the SMSSync device.

A message with several recipients is delivered by the device as one sms per
recipient. Each of those is identified by "<message id>:<recipient>" and the
device echoes that id back when it reports the sms as queued or delivered.
"""

from typing import Any, Optional

SEPARATOR = ":"


def encode(message_id: str, recipient: str) -> str:
    """Build the correlation id for one recipient of a message."""
    return f"{message_id}{SEPARATOR}{recipient}"


def decode(uuid: Any) -> Optional[str]:
    """
    Extract the message id from a correlation id.

    Ids come from the device, so anything that does not look like
    "<id>:<recipient>" yields None instead of raising.
    """
    if not isinstance(uuid, str) or SEPARATOR not in uuid:
        return None

    message_id = uuid.split(SEPARATOR, 1)[0]
    return message_id or None
