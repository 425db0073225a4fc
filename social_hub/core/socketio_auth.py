from functools import wraps
from flask import current_app, g, request
from flask_socketio import emit
from flask_jwt_extended import decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import ExpiredSignatureError, InvalidTokenError

from .. import db
from ..models.db_models import User


def _reject(func_name, message, reason):
    current_app.logger.debug(
        f"SocketIO: jwt_required_socketio - Rejecting '{func_name}' for SID {request.sid}: {reason}"
    )
    emit("auth_error", {"message": message}, room=request.sid)
    return False


def jwt_required_socketio(f):
    """Authenticates a Socket.IO event by the ``token`` field of its payload.

    On success the user is stored on ``g.socketio_user`` and the socket is
    registered in the application's connection registry. On failure an
    ``auth_error`` event is sent back to the emitting socket only.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        func_name = f.__name__

        if not args or not isinstance(args[0], dict):
            current_app.logger.warning(
                f"SocketIO: Auth decorator expected dict as first arg, got "
                f"{type(args[0]) if args else 'None'}. Event: '{func_name}', SID: {request.sid}"
            )
            return _reject(
                func_name,
                "Invalid event data format for authentication.",
                "payload is not a dict",
            )

        token = args[0].get("token")
        if not token:
            current_app.logger.info(
                f"SocketIO: Missing token for event '{func_name}' from SID {request.sid}"
            )
            return _reject(func_name, "Authentication token missing.", "missing token")

        try:
            decoded_token = decode_token(token)
        except ExpiredSignatureError as e:
            current_app.logger.info(
                f"SocketIO: Expired token for event '{func_name}' from SID {request.sid}: {e}"
            )
            return _reject(func_name, "Token has expired.", "expired token")
        except (InvalidTokenError, JWTExtendedException) as e:
            current_app.logger.warning(
                f"SocketIO: Invalid token for event '{func_name}' from SID {request.sid}. "
                f"Type: {type(e).__name__}, Error: {e}"
            )
            return _reject(
                func_name, f"Invalid token supplied: {e}", "invalid token"
            )

        user_identity = decoded_token.get("sub")
        if user_identity is None:
            current_app.logger.warning(
                f"SocketIO: 'sub' claim missing in token for event '{func_name}' from SID {request.sid}"
            )
            return _reject(
                func_name,
                "Token is missing the 'sub' (subject) claim.",
                "missing sub claim",
            )

        try:
            user_id = int(user_identity)
        except ValueError:
            current_app.logger.warning(
                f"SocketIO: Invalid user_id format '{user_identity}' in token for event '{func_name}'"
            )
            return _reject(
                func_name,
                "Invalid user identity format in token.",
                "non-integer identity",
            )

        user = db.session.get(User, user_id)
        if not user:
            current_app.logger.warning(
                f"SocketIO: User with ID {user_id} (from token sub) not found for event '{func_name}'. SID: {request.sid}"
            )
            return _reject(
                func_name, "User associated with token not found.", "unknown user"
            )

        g.socketio_user = user
        current_app.connection_registry.register(request.sid, user.id)
        current_app.logger.debug(
            f"SocketIO: User {user.username} (ID: {user.id}) authenticated for event '{func_name}'. SID: {request.sid}"
        )
        return f(*args, **kwargs)

    return decorated_function
