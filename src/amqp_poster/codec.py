"""
Wire envelope encoding and decoding.

Every payload travels as UTF-8 JSON wrapped in an envelope, either
`{"data": <payload>}` or `{"error": {"message": ..., ...extra fields}}`.
Messages that are not declared as JSON are handed over as plain text.
"""

import datetime
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic_core import PydanticSerializationError, to_json, to_jsonable_python

from amqp_poster.exceptions import CodecError, RemoteError
from amqp_poster.rabbitmq.base import InboundMessage

logger = logging.getLogger(__name__)

CONTENT_TYPE_JSON = "application/json"
CONTENT_ENCODING = "utf8"
PERSISTENT_DELIVERY_MODE = 2


class Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: Any = None
    error: Any = None


def message_properties(correlation_id: str, reply_to: Optional[str] = None) -> dict:
    """AMQP properties carried by every message the poster publishes."""
    properties = {
        "content_type": CONTENT_TYPE_JSON,
        "content_encoding": CONTENT_ENCODING,
        "timestamp": datetime.datetime.now(datetime.timezone.utc),
        "correlation_id": correlation_id,
        "delivery_mode": PERSISTENT_DELIVERY_MODE,
    }
    if reply_to:
        properties["reply_to"] = reply_to
    return properties


def encode(payload: Any) -> bytes:
    """
    Wrap a payload in a success envelope.

    :raises CodecError: If the payload is not JSON serializable.
    """
    try:
        return to_json({"data": payload})
    except PydanticSerializationError as e:
        raise CodecError(f"Can not serialize the content: {e}") from e


def error_fields(error: BaseException) -> dict[str, Any]:
    """
    Flatten an exception into the fields of an error envelope.

    Public instance attributes are carried along as extra fields; values JSON
    can not represent are sent as their string form.
    """
    if isinstance(error, RemoteError):
        fields = dict(error.details)
        if error.name:
            fields["name"] = error.name
        fields["message"] = error.message
    else:
        extra = {
            key: value
            for key, value in getattr(error, "__dict__", {}).items()
            if not key.startswith("_")
        }
        fields = {"name": type(error).__name__, **extra, "message": str(error)}
    return to_jsonable_python(fields, serialize_unknown=True)


def encode_error(error: BaseException) -> bytes:
    """
    Wrap an exception in an error envelope.

    Falls back to message and name only when the extra fields can not be
    serialized (e.g. a circular reference), so an error reply is always built.
    """
    try:
        return to_json({"error": error_fields(error)})
    except ValueError as e:
        # PydanticSerializationError is a ValueError too
        logger.warning(
            "Can not serialize fields of %s, sending message only: %s", type(error).__name__, e
        )
        return to_json({"error": {"message": str(error), "name": type(error).__name__}})


def message_text(message: InboundMessage) -> str:
    body = message.body
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray, memoryview)):
        encoding = (message.properties or {}).get("content_encoding") or CONTENT_ENCODING
        try:
            return bytes(body).decode(encoding)
        except (LookupError, UnicodeDecodeError) as e:
            raise CodecError(f"Can not decode the content as {encoding}") from e
    return str(body)


def decode_envelope(text: str) -> Any:
    try:
        envelope = Envelope.model_validate_json(text)
    except ValidationError as e:
        raise CodecError("Can not parse the content") from e

    # falsy error members (false, 0, "") count as success
    if envelope.error:
        raise RemoteError.from_envelope(envelope.error)
    return envelope.data


def decode(message: InboundMessage) -> Any:
    """
    Return the payload of a delivered message.

    :raises CodecError: If JSON content can not be parsed.
    :raises RemoteError: If the envelope carries an error.
    """
    text = message_text(message)
    if (message.properties or {}).get("content_type") != CONTENT_TYPE_JSON:
        return text
    return decode_envelope(text)
