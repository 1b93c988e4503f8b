"""SMSSync transport for open311 messages."""

from open311_smssync.schemas import Message
from open311_smssync.transport import SmsSync

__all__ = ["Message", "SmsSync"]
