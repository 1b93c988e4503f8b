from dataclasses import dataclass
from typing import Optional

from open311_smssync.config import Settings
from open311_smssync.queueing import JobQueue
from open311_smssync.storage import MessageStore


@dataclass
class SmsSyncContext:
    """Settings and collaborators shared by the sync handlers."""
    settings: Settings
    store: MessageStore
    queue: Optional[JobQueue] = None
