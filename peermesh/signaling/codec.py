"""
Wire codec for signaling messages.

A message is one text frame of six ``|`` separated fields::

    TYPE|senderId|receiverId|payload|peerCount|senderIsMediaSource
"""
from peermesh.core.exceptions import MalformedMessage
from peermesh.core.logging import debug_log
from peermesh.signaling.messages import MessageType, SignalingMessage

SEPARATOR = "|"
FIELD_COUNT = 6


def _format_flag(value: bool) -> str:
    return "true" if value else "false"


def _parse_flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise MalformedMessage("Invalid media source flag", {"value": value})


def encode(message: SignalingMessage) -> str:
    """Encode a message into a single wire frame."""
    fields = [
        message.type.value,
        message.sender_id,
        message.receiver_id,
        message.payload,
        str(message.peer_count),
        _format_flag(message.sender_is_media_source)
    ]
    for field in fields:
        if SEPARATOR in field:
            raise MalformedMessage("Field contains the separator", {
                "type": message.type.value,
                "field": field[:200]
            })
    return SEPARATOR.join(fields)


def decode(text: str) -> SignalingMessage:
    """Decode a wire frame, raising MalformedMessage on structural errors."""
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage("Frame is not valid UTF-8", {"error": str(e)})

    fields = text.split(SEPARATOR)
    if len(fields) != FIELD_COUNT:
        raise MalformedMessage("Unexpected field count", {
            "expected": FIELD_COUNT,
            "received": len(fields),
            "frame": text[:200]
        })

    type_name, sender_id, receiver_id, payload, count, flag = fields

    message_type = MessageType.parse(type_name)
    if message_type is MessageType.UNKNOWN:
        debug_log("❔ [Codec] Unrecognised message type", {
            "type": type_name,
            "sender_id": sender_id
        }, "WARNING")

    try:
        peer_count = int(count)
    except ValueError:
        raise MalformedMessage("Invalid peer count", {"value": count})

    return SignalingMessage(
        type=message_type,
        sender_id=sender_id,
        receiver_id=receiver_id,
        payload=payload,
        peer_count=peer_count,
        sender_is_media_source=_parse_flag(flag)
    )
