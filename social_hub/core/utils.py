import os
import uuid
from flask import current_app
from flask_jwt_extended import get_jwt_identity
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.utils import secure_filename

from .. import db
from ..models.db_models import User
from ..services.errors import (
    ConcurrentModification,
    InvalidInput,
    ServerError,
    UserNotFound,
)

UPLOADS_URL_PREFIX = "/uploads/"


def get_current_user():
    """Loads the user named by the JWT of the current request."""
    current_user_id = int(get_jwt_identity())
    user = db.session.get(User, current_user_id)
    if not user:
        raise UserNotFound("User not found for provided token")
    return user


def commit_session(description, conflict_error=ConcurrentModification):
    """Commits the session, rolling back and raising a domain error on failure.

    An IntegrityError means a concurrent request already wrote a conflicting
    row; it becomes ``conflict_error``. Any other database error is logged and
    reported as a generic server error.
    """
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        current_app.logger.warning(
            f"Integrity error while {description}: {getattr(e, 'orig', e)}"
        )
        raise conflict_error()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(
            f"Database error while {description}: {e}", exc_info=True
        )
        raise ServerError()


def contains_pattern(term):
    """Builds an ILIKE pattern matching ``term`` literally anywhere in a column.

    Use with ``escape="\\"`` so ``%`` and ``_`` in the term are not wildcards.
    """
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def file_extension(filename):
    if not filename or "." not in filename or filename.rsplit(".", 1)[0] == "":
        return None
    return filename.rsplit(".", 1)[1].lower()


def allowed_image(filename):
    return file_extension(filename) in current_app.config["ALLOWED_IMAGE_EXTENSIONS"]


def allowed_video(filename):
    return file_extension(filename) in current_app.config["ALLOWED_VIDEO_EXTENSIONS"]


def media_type_for(filename):
    if allowed_image(filename):
        return "image"
    if allowed_video(filename):
        return "video"
    return None


def _stream_size(file_storage):
    stream = file_storage.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def save_upload(file_storage, folder_key, max_size):
    """Stores an uploaded file under the configured folder and returns its URL.

    The caller is responsible for checking the file type. The stored name is
    prefixed with a random hex string so uploads never overwrite each other.
    """
    if file_storage is None or not file_storage.filename:
        raise InvalidInput("No file uploaded")

    size = _stream_size(file_storage)
    if size > max_size:
        raise InvalidInput(
            f"File too large, maximum size is {max_size // (1024 * 1024)}MB"
        )

    folder = current_app.config[folder_key]
    filename = f"{uuid.uuid4().hex}_{secure_filename(file_storage.filename)}"
    path = os.path.join(folder, filename)
    file_storage.save(path)
    current_app.logger.info(f"Saved upload {filename} ({size} bytes) to {folder}")

    relative_path = os.path.relpath(path, current_app.config["UPLOAD_FOLDER"])
    return UPLOADS_URL_PREFIX + relative_path.replace(os.sep, "/")


def remove_upload(url, folder_key):
    """Deletes the stored file behind ``url`` if it lives in the given folder."""
    if not url or not url.startswith(UPLOADS_URL_PREFIX):
        return False

    upload_root = current_app.config["UPLOAD_FOLDER"]
    path = os.path.abspath(
        os.path.join(upload_root, url[len(UPLOADS_URL_PREFIX):])
    )
    folder = os.path.abspath(current_app.config[folder_key])
    if os.path.commonpath([path, folder]) != folder:
        current_app.logger.warning(
            f"Refusing to delete {path}: outside of {folder_key} ({folder})"
        )
        return False

    if os.path.isfile(path):
        os.remove(path)
        current_app.logger.info(f"Deleted stored file {path}")
        return True
    return False
