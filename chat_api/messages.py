import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chat_api.errors import InvalidPayload, NotFound, UpstreamError
from chat_api.models import Message, User
from chat_api.schemas import (
    EmojiPayload,
    FilePayload,
    ImagePayload,
    MessagePayload,
    MessageResponse,
    OutgoingPayload,
    StickerPayload,
    TextPayload,
    UserSummary,
)

logger = logging.getLogger(__name__)

_message_payload = TypeAdapter(MessagePayload)
_outgoing_payload = TypeAdapter(OutgoingPayload)


def _field_errors(exc: PydanticValidationError) -> list:
    errors = []
    for err in exc.errors():
        # Drop the discriminator tag pydantic puts in front of variant fields
        loc = [str(part) for part in err["loc"]]
        if len(loc) > 1 and loc[0] in ("text", "emoji", "sticker", "image", "file"):
            loc = loc[1:]
        errors.append({"field": ".".join(loc) or "type", "message": err["msg"]})
    return errors


def parse_payload(data: Any, outgoing: bool = False):
    """
    Validate a raw mapping into one of the message payload variants.

    With outgoing=True only the types a client may send directly
    (text, emoji, sticker) are accepted.

    Raises:
        InvalidPayload: unknown type or missing/invalid fields
    """
    adapter = _outgoing_payload if outgoing else _message_payload
    try:
        return adapter.validate_python(data)
    except PydanticValidationError as e:
        raise InvalidPayload(errors=_field_errors(e))


def _columns_for(payload) -> dict:
    if isinstance(payload, TextPayload):
        return {"text": payload.text}
    if isinstance(payload, EmojiPayload):
        return {"emoji": payload.emoji}
    if isinstance(payload, StickerPayload):
        return {"sticker": payload.sticker}
    if isinstance(payload, (ImagePayload, FilePayload)):
        return {
            "file_name": payload.file_name,
            "file_path": payload.file_path,
            "file_size": payload.file_size,
        }
    raise InvalidPayload(f"Unsupported message type: {type(payload).__name__}")


class MessageRepository:
    """
    Persistence for the shared channel.

    Messages are append-only and ordered by (created_at, id).
    """

    def __init__(self, session_factory: sessionmaker, files_url_prefix: str = "/uploads"):
        self._session_factory = session_factory
        self._files_url_prefix = files_url_prefix.rstrip("/")

    def append(self, sender_id: int, payload: Union[Mapping, MessagePayload]) -> MessageResponse:
        """
        Store a message from sender_id.

        Args:
            sender_id: Id of the authenticated sender
            payload: A payload variant, or a raw mapping to validate into one

        Returns:
            The stored message with the sender's username

        Raises:
            InvalidPayload: payload does not satisfy its type's field rules
            NotFound: sender does not exist
            UpstreamError: the database failed
        """
        if isinstance(payload, Mapping):
            payload = parse_payload(payload)
        columns = _columns_for(payload)

        created_at = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        logger.info(f"Appending message: sender_id={sender_id}, type={payload.type}")

        with self._session_factory() as db:
            try:
                username = db.query(User.username).filter(User.id == sender_id).scalar()
                if username is None:
                    raise NotFound("Sender not found")

                message = Message(
                    sender_id=sender_id,
                    type=payload.type,
                    created_at=created_at,
                    **columns,
                )
                db.add(message)
                db.commit()
                logger.info(f"Message stored: id={message.id}, type={message.type}")
                return self._to_response(message, username)

            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to store message from sender_id={sender_id}: {e}")
                raise UpstreamError() from e

    def list(self, limit: int = 100) -> List[MessageResponse]:
        """
        Return the newest `limit` messages, oldest first.
        """
        logger.info(f"Querying messages: limit={limit}")

        with self._session_factory() as db:
            try:
                rows = (
                    db.query(Message, User.username)
                    .join(User, Message.sender_id == User.id)
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(limit)
                    .all()
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to query messages: {e}")
                raise UpstreamError() from e

            messages = [self._to_response(message, username) for message, username in reversed(rows)]

        logger.info(f"Retrieved {len(messages)} messages")
        return messages

    def _to_response(self, message: Message, username: str) -> MessageResponse:
        file_url = f"{self._files_url_prefix}/{message.file_path}" if message.file_path else None
        return MessageResponse(
            id=message.id,
            type=message.type,
            text=message.text,
            emoji=message.emoji,
            sticker=message.sticker,
            file_name=message.file_name,
            file_url=file_url,
            file_size=message.file_size,
            sender=UserSummary(id=message.sender_id, username=username),
            created_at=message.created_at,
        )
