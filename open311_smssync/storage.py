import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from open311_smssync.errors import StoreError
from open311_smssync.schemas import Message

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

# Fields a save() is allowed to change; id, direction, hash and the
# routing tags are fixed at creation
MUTABLE_FIELDS = ("from_msisdn", "to", "subject", "body", "priority", "state", "options")


def utc_now() -> str:
    """Server timestamp, ISO-8601 UTC with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    check_same_thread=False is required for SQLite since parallel state
    updates run on worker threads, each with its own session.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, echo=False)


def _to_message(record) -> Message:
    return Message(
        id=record.id,
        type=record.type,
        direction=record.direction,
        from_msisdn=record.from_msisdn,
        to=list(record.to or []),
        subject=record.subject,
        body=record.body,
        hash=record.hash,
        transport=record.transport,
        queue_name=record.queue_name,
        priority=record.priority,
        state=record.state,
        mode=record.mode,
        options=dict(record.options or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _enum_value(value):
    return getattr(value, "value", value)


class MessageStore:
    """
    Durable repository of messages.

    Every operation runs in its own short-lived session so the store can be
    shared between request handlers, queue workers and the threads used for
    parallel state updates.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None and not database_url:
            raise ValueError("database_url or engine is required")
        self.engine = engine if engine is not None else create_db_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Create all tables.
        Called during application startup.
        """
        logger.debug(f"Initializing database with URL: {self.engine.url}")
        try:
            # Import models to register them with Base.metadata
            from open311_smssync.models import MessageRecord  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreError(f"Failed to initialize database: {e}") from e

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and the messages table exists, False otherwise.
        """
        logger.debug("Checking database health...")
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            if not inspect(self.engine).has_table("messages"):
                logger.error("Database schema not applied: 'messages' table not found")
                return False
            logger.debug("Database health check passed")
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    # =========================================================================
    # Queries
    # =========================================================================

    def find_by_hash(self, hash: Optional[str]) -> Optional[Message]:
        """
        Retrieve a message by its inbound hash.

        Returns:
            Message if found, None otherwise (also when hash is empty)
        """
        from open311_smssync.models import MessageRecord

        if not hash:
            return None

        logger.debug(f"Looking up message by hash: {hash}")
        try:
            with self.SessionLocal() as db:
                record = db.query(MessageRecord).filter(MessageRecord.hash == hash).first()
                result = _to_message(record) if record else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up message by hash {hash}: {e}")
            raise StoreError(f"Failed to look up message by hash: {e}") from e

        logger.debug(f"Message lookup result: {'found' if result else 'not found'}")
        return result

    def get(self, message_id: str) -> Optional[Message]:
        """Retrieve a message by its id."""
        from open311_smssync.models import MessageRecord

        try:
            with self.SessionLocal() as db:
                record = db.get(MessageRecord, message_id)
                return _to_message(record) if record else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up message {message_id}: {e}")
            raise StoreError(f"Failed to look up message: {e}") from e

    def find(
        self,
        type=None,
        transport: Optional[str] = None,
        state=None,
        ids: Optional[Iterable[str]] = None
    ) -> List[Message]:
        """
        Retrieve messages matching all given filters.

        Args:
            type: MessageType to match
            transport: Transport tag to match
            state: State to match
            ids: Restrict to these ids; an empty collection matches nothing

        Returns:
            Messages ordered by created_at ASC, id ASC (deterministic)
        """
        from open311_smssync.models import MessageRecord

        logger.debug(f"Querying messages: type={type}, transport={transport}, state={state}, ids={ids}")

        try:
            with self.SessionLocal() as db:
                query = db.query(MessageRecord)

                if type is not None:
                    query = query.filter(MessageRecord.type == _enum_value(type))
                if transport is not None:
                    query = query.filter(MessageRecord.transport == transport)
                if state is not None:
                    query = query.filter(MessageRecord.state == _enum_value(state))
                if ids is not None:
                    ids = list(ids)
                    if not ids:
                        return []
                    query = query.filter(MessageRecord.id.in_(ids))

                query = query.order_by(MessageRecord.created_at.asc(), MessageRecord.id.asc())
                messages = [_to_message(record) for record in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to query messages: {e}")
            raise StoreError(f"Failed to query messages: {e}") from e

        logger.debug(f"Retrieved {len(messages)} messages")
        return messages

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, message: Message) -> Tuple[Message, bool]:
        """
        Persist a new message (idempotent on hash).

        Returns:
            Tuple of (message, is_duplicate)
            - (created, False): Message created, id assigned
            - (existing, True): A message with the same hash already exists
        """
        from open311_smssync.models import MessageRecord

        message_id = message.id or uuid.uuid4().hex
        now = utc_now()
        logger.info(f"Creating message: id={message_id}, direction={message.direction.value}, hash={message.hash}")

        record = MessageRecord(
            id=message_id,
            type=_enum_value(message.type),
            direction=_enum_value(message.direction),
            from_msisdn=message.from_msisdn,
            to=list(message.to),
            subject=message.subject,
            body=message.body,
            hash=message.hash,
            transport=message.transport,
            queue_name=message.queue_name,
            priority=_enum_value(message.priority),
            state=_enum_value(message.state),
            mode=_enum_value(message.mode),
            options=dict(message.options),
            created_at=now,
            updated_at=now,
        )

        with self.SessionLocal() as db:
            try:
                db.add(record)
                db.commit()
                created = _to_message(record)
            except IntegrityError as e:
                # hash already exists - a concurrent receive of the same sms
                db.rollback()
                if not message.hash:
                    logger.error(f"Failed to create message {message_id}: {e}")
                    raise StoreError(f"Failed to create message: {e}") from e
                existing = db.query(MessageRecord).filter(MessageRecord.hash == message.hash).first()
                if existing is None:
                    raise StoreError(f"Failed to create message: {e}") from e
                logger.info(f"Duplicate message detected: hash={message.hash}")
                return _to_message(existing), True
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to create message {message_id}: {e}")
                raise StoreError(f"Failed to create message: {e}") from e

        logger.info(f"Message created successfully: {message_id}")
        return created, False

    def save(self, message: Message) -> Message:
        """
        Persist changes of an existing message.

        Raises:
            StoreError: message has no id, does not exist or the write failed
        """
        from open311_smssync.models import MessageRecord

        if not message.id:
            raise StoreError("Cannot save a message without id")

        with self.SessionLocal() as db:
            try:
                record = db.get(MessageRecord, message.id)
                if record is None:
                    raise StoreError(f"Message {message.id} does not exist")

                for field in MUTABLE_FIELDS:
                    value = getattr(message, field)
                    if field == "to":
                        value = list(value)
                    elif field == "options":
                        value = dict(value)
                    setattr(record, field, _enum_value(value))
                record.updated_at = utc_now()

                db.commit()
                saved = _to_message(record)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to save message {message.id}: {e}")
                raise StoreError(f"Failed to save message: {e}") from e

        logger.debug(f"Message saved: id={saved.id}, state={saved.state.value}")
        return saved

    def process(self, payload: dict) -> Message:
        """
        Persist an outbound message received from the job queue.

        A job delivered twice for a message that already has an id is
        resolved to the stored record.
        """
        message = Message.model_validate(payload)
        logger.info(f"Processing queued message: to={message.to}, transport={message.transport}")

        if message.id:
            existing = self.get(message.id)
            if existing is not None:
                logger.info(f"Message already stored: {message.id}")
                return existing

        created, _ = self.create(message)
        return created
