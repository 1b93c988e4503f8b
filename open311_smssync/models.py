"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For the pydantic Message model, see schemas.py.
"""

from sqlalchemy import JSON, Column, String, Text

from open311_smssync.storage import Base


class MessageRecord(Base):
    """
    SQLAlchemy model for storing sms messages.

    Table: messages
    Primary Key: id (uuid4 hex, never contains ':')
    Unique: hash (inbound idempotency)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True, index=True)
    type = Column(String, nullable=False, index=True)
    direction = Column(String, nullable=False)
    from_msisdn = Column(String, nullable=True)
    to = Column(JSON, nullable=False, default=list)
    subject = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    hash = Column(String, nullable=True, unique=True, index=True)
    transport = Column(String, nullable=True, index=True)
    queue_name = Column(String, nullable=True)
    priority = Column(String, nullable=False)
    state = Column(String, nullable=False, index=True)
    mode = Column(String, nullable=False)
    options = Column(JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False, index=True)  # Server time ISO-8601
    updated_at = Column(String, nullable=False)
