import threading
from flask import current_app

from .. import socketio


class ConnectionRegistry:
    """Maps Socket.IO session ids to user ids and back.

    Entries are added when a socket authenticates an event and removed on
    disconnect. All access goes through a single lock because handlers run on
    several worker threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._user_by_sid = {}
        self._sids_by_user = {}

    def register(self, sid, user_id):
        with self._lock:
            previous = self._user_by_sid.get(sid)
            if previous is not None and previous != user_id:
                self._discard(sid, previous)
            self._user_by_sid[sid] = user_id
            self._sids_by_user.setdefault(user_id, set()).add(sid)

    def unregister(self, sid):
        with self._lock:
            user_id = self._user_by_sid.pop(sid, None)
            if user_id is not None:
                self._discard(sid, user_id)
            return user_id

    def _discard(self, sid, user_id):
        sids = self._sids_by_user.get(user_id)
        if sids is None:
            return
        sids.discard(sid)
        if not sids:
            del self._sids_by_user[user_id]

    def user_for(self, sid):
        with self._lock:
            return self._user_by_sid.get(sid)

    def sids_for(self, user_id):
        with self._lock:
            return sorted(self._sids_by_user.get(user_id, ()))

    def is_connected(self, user_id):
        with self._lock:
            return user_id in self._sids_by_user

    def __len__(self):
        with self._lock:
            return len(self._user_by_sid)


def emit_to_user(user_id, event, payload):
    """Sends ``event`` to every socket registered for ``user_id``.

    Returns the number of sockets reached. Delivery is best effort: failures
    are logged and never propagate to the caller.
    """
    logger = current_app.logger
    sids = current_app.connection_registry.sids_for(user_id)
    if not sids:
        logger.debug(f"No connected sockets for user {user_id}; '{event}' not delivered")
        return 0

    delivered = 0
    for sid in sids:
        try:
            socketio.emit(event, payload, to=sid)
            delivered += 1
        except Exception as e:
            logger.error(f"Error emitting '{event}' to user {user_id} on SID {sid}: {e}")
    logger.debug(f"Emitted '{event}' to {delivered} socket(s) of user {user_id}")
    return delivered


def deliver_message(message):
    """Relays a stored message to its room and notifies the receiver."""
    logger = current_app.logger
    payload = message.to_dict()

    try:
        socketio.emit("receive_message", payload, to=message.room)
    except Exception as e:
        logger.error(f"Error relaying message {message.id} to room {message.room}: {e}")

    emit_to_user(
        message.receiver_id,
        "new_message_notification",
        {
            "message_id": message.id,
            "sender": payload["sender"],
            "room": message.room,
            "preview": message.content[:50],
            "created_at": payload["created_at"],
        },
    )


def notify_group_invitation(group, inviter, target):
    emit_to_user(
        target.id,
        "group_invitation",
        {
            "group": {"id": group.id, "name": group.name},
            "invited_by": inviter.to_summary_dict(),
        },
    )
