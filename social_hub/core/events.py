from flask import request, current_app, g
from flask_socketio import emit, join_room

from .. import socketio
from ..core.socketio_auth import jwt_required_socketio
from ..services.message_service import room_participants


@socketio.on("join_room")
@jwt_required_socketio
def handle_join_room_event(data):
    user = g.socketio_user
    room = data.get("room")

    if not room:
        current_app.logger.warning(
            f"SocketIO: 'join_room' event from user {user.username} (SID: {request.sid}) missing 'room' data."
        )
        emit("chat_error", {"message": "Room is required."}, room=request.sid)
        return

    participants = room_participants(room)
    if participants is None or user.id not in participants:
        current_app.logger.warning(
            f"SocketIO: User {user.id} (SID: {request.sid}) refused entry to room '{room}'"
        )
        emit(
            "chat_error",
            {"message": "You are not a participant of this conversation."},
            room=request.sid,
        )
        return

    join_room(room)
    current_app.logger.info(
        f"SocketIO: User {user.username} (ID: {user.id}, SID: {request.sid}) joined room: {room}"
    )
    emit("room_joined", {"room": room}, room=request.sid)


@socketio.on("send_message")
@jwt_required_socketio
def handle_send_message_event(data):
    """Relays a chat payload to its room.

    Persistence happens through the REST endpoint; this event only fans the
    message out to the sockets currently in the room.
    """
    user = g.socketio_user
    room = data.get("room")

    participants = room_participants(room)
    if participants is None or user.id not in participants:
        current_app.logger.warning(
            f"SocketIO: User {user.id} (SID: {request.sid}) tried to send to room '{room}'"
        )
        emit(
            "chat_error",
            {"message": "You are not a participant of this conversation."},
            room=request.sid,
        )
        return

    payload = {key: value for key, value in data.items() if key != "token"}
    payload["sender"] = user.to_summary_dict()
    socketio.emit("receive_message", payload, to=room)
    current_app.logger.debug(
        f"SocketIO: Relayed message from user {user.id} to room '{room}'"
    )


@socketio.on("disconnect")
def handle_disconnect(*args):
    user_id = current_app.connection_registry.unregister(request.sid)
    if user_id is not None:
        current_app.logger.info(
            f"SocketIO: User {user_id} disconnected (SID: {request.sid})"
        )
    else:
        current_app.logger.debug(
            f"SocketIO: Anonymous client disconnected (SID: {request.sid})"
        )
