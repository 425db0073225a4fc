from flask import current_app
from sqlalchemy import or_, update

from .. import db
from ..core.utils import commit_session
from ..models.db_models import Message
from .errors import InvalidInput, MessageNotFound, NotAuthorized
from .notifications_service import deliver_message
from .user_service import get_user


def room_id(user_a, user_b):
    """Canonical room id for a two-party conversation, independent of order."""
    first, second = sorted((int(user_a), int(user_b)))
    return f"{first}_{second}"


def room_participants(room):
    """Returns the two user ids encoded in ``room`` or None if it is malformed."""
    parts = (room or "").split("_")
    if len(parts) != 2:
        return None
    try:
        first, second = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if room_id(first, second) != room:
        return None
    return first, second


def send_message(sender, receiver_id, content):
    """Stores a message and relays it to the room and the receiver's sockets.

    The message is committed before any real-time delivery is attempted, so a
    failed broadcast never loses it.
    """
    content = (content or "").strip()
    if not content:
        raise InvalidInput("Content is required")
    receiver = get_user(receiver_id)

    message = Message(
        sender_id=sender.id,
        receiver_id=receiver.id,
        content=content,
        room=room_id(sender.id, receiver.id),
    )
    db.session.add(message)
    commit_session(f"storing message from user {sender.id} to user {receiver.id}")
    current_app.logger.info(
        f"User {sender.id} sent message {message.id} to user {receiver.id} in room {message.room}"
    )

    deliver_message(message)
    return message


def get_conversation(user, other_id):
    """Messages between ``user`` and ``other_id``, oldest first.

    Messages addressed to ``user`` are marked as read.
    """
    room = room_id(user.id, other_id)
    messages = (
        Message.query.filter_by(room=room)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    payload = [message.to_dict() for message in messages]
    marked = mark_read(user, other_id)
    if marked:
        current_app.logger.debug(
            f"Marked {marked} message(s) in room {room} as read for user {user.id}"
        )
    return payload


def list_conversations(user):
    """Latest message per counterpart with its unread count, newest first."""
    messages = (
        Message.query.filter(
            or_(Message.sender_id == user.id, Message.receiver_id == user.id)
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )

    conversations = {}
    for message in messages:
        other = message.receiver if message.sender_id == user.id else message.sender
        if other.id in conversations:
            continue
        entry = message.to_dict()
        entry["other_user"] = other.to_summary_dict()
        entry["unread_count"] = Message.query.filter_by(
            sender_id=other.id, receiver_id=user.id, is_read=False
        ).count()
        conversations[other.id] = entry

    return list(conversations.values())


def unread_count(user):
    return Message.query.filter_by(receiver_id=user.id, is_read=False).count()


def mark_read(user, other_id):
    """Marks every unread message from ``other_id`` to ``user`` as read."""
    result = db.session.execute(
        update(Message)
        .where(
            Message.room == room_id(user.id, other_id),
            Message.receiver_id == user.id,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    commit_session(f"marking messages from user {other_id} read for user {user.id}")
    return result.rowcount


def delete_message(message_id, user):
    message = db.session.get(Message, message_id)
    if not message:
        raise MessageNotFound()
    if message.sender_id != user.id:
        current_app.logger.warning(
            f"User {user.id} tried to delete message {message.id} sent by user {message.sender_id}"
        )
        raise NotAuthorized()

    db.session.delete(message)
    commit_session(f"deleting message {message_id}")
    current_app.logger.info(f"User {user.id} deleted message {message_id}")
    return {"message": "Message deleted"}
