import os
from datetime import timedelta


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY") or "you-should-change-this"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY") or "super-secret-jwt"
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=24)
    # Lets Flask-JWT-Extended errors reach their handlers through Flask-RESTful
    PROPAGATE_EXCEPTIONS = True
    ERROR_404_HELP = False
    UPLOAD_FOLDER = "uploads"
    PROFILE_PICS_FOLDER = "uploads/profile_pics"
    POST_MEDIA_FOLDER = "uploads/posts"
    ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
    ALLOWED_VIDEO_EXTENSIONS = {"mp4", "webm", "mov", "ogg"}
    PROFILE_PICTURE_MAX_SIZE = 5 * 1024 * 1024
    POST_MEDIA_MAX_SIZE = 10 * 1024 * 1024
    POST_TEXT_MAX_LENGTH = 5000
    SEARCH_RESULT_LIMIT = 20
    STATS_SNAPSHOT_MAX_AGE_SECONDS = 15 * 60
    STATS_REFRESH_MINUTES = 10
    SOCKETIO_MESSAGE_QUEUE = os.environ.get("SOCKETIO_MESSAGE_QUEUE")
    SOCKETIO_CORS_ALLOWED_ORIGINS = (
        os.environ.get("SOCKETIO_CORS_ALLOWED_ORIGINS") or "http://localhost:3000"
    )


class DefaultConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or "sqlite:///site.db"


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret-key"
    SOCKETIO_MESSAGE_QUEUE = None
    SOCKETIO_CORS_ALLOWED_ORIGINS = "*"
    SERVER_NAME = "localhost"
    APPLICATION_ROOT = "/"
    PREFERRED_URL_SCHEME = "http"
    UPLOAD_FOLDER = "test_uploads"
    PROFILE_PICS_FOLDER = "test_uploads/profile_pics"
    POST_MEDIA_FOLDER = "test_uploads/posts"
