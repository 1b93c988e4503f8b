"""
Exceptions raised by the SMSSync transport.

StoreError and QueueError propagate to the caller; the HTTP layer turns
them into 500 responses. Malformed correlation ids never raise, see
correlation.decode().
"""


class SmsSyncError(Exception):
    """Base class for transport errors."""


class StoreError(SmsSyncError):
    """Lookup, create or save against the message store failed."""


class QueueError(SmsSyncError):
    """Publishing a job or shutting the job queue down failed."""
