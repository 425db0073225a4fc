import os
from flask import Flask, jsonify, send_from_directory, current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_restful import Api as FlaskRestfulApi
from flask_jwt_extended import JWTManager
from flask_socketio import SocketIO
from apscheduler.schedulers.background import BackgroundScheduler
from werkzeug.exceptions import HTTPException

from config import DefaultConfig, TestingConfig

db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
socketio = SocketIO()
scheduler = BackgroundScheduler()

CONFIGS = {
    "default": DefaultConfig,
    "testing": TestingConfig,
}


def create_app(config_class=None):
    """Creates and configures the Flask application."""
    app = Flask(__name__)

    if isinstance(config_class, str):
        if config_class not in CONFIGS:
            raise ValueError(f"Unknown configuration name: {config_class}")
        app.config.from_object(CONFIGS[config_class])
    elif config_class is not None:
        app.config.from_object(config_class)
    else:
        app.config.from_object(DefaultConfig)

    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    fr_api = FlaskRestfulApi(app)

    from .core import events as core_events  # noqa: F401  registers socket handlers
    from .services.notifications_service import ConnectionRegistry

    socketio.init_app(
        app,
        message_queue=app.config.get("SOCKETIO_MESSAGE_QUEUE"),
        cors_allowed_origins=app.config.get("SOCKETIO_CORS_ALLOWED_ORIGINS"),
    )
    app.connection_registry = ConnectionRegistry()
    app.stats_snapshot = None

    from .api.routes import (
        RegisterResource,
        LoginResource,
        CurrentUserResource,
        UserSearchResource,
        UserResource,
        ProfilePictureResource,
        FriendResource,
        FriendRequestListResource,
        FriendRequestResource,
        FriendRequestAcceptResource,
        FriendRequestRejectResource,
        PostListResource,
        PostSearchResource,
        PostMediaUploadResource,
        PostResource,
        PostLikeResource,
        PostUnlikeResource,
        CommentListResource,
        CommentResource,
        UserPostsResource,
        GroupPostsResource,
        MessageListResource,
        UnreadMessageCountResource,
        ConversationResource,
        MarkConversationReadResource,
        MessageResource,
        PostsPerMonthStatsResource,
        GroupsByMembersStatsResource,
        ActiveUsersStatsResource,
        PostEngagementStatsResource,
    )
    from .api.group_routes import (
        GroupListResource,
        MyGroupsResource,
        GroupSearchResource,
        GroupInvitationListResource,
        GroupResource,
        GroupJoinResource,
        GroupInviteResource,
        GroupInvitationResponseResource,
        GroupApproveResource,
        GroupRejectResource,
        GroupMemberResource,
        GroupLeaveResource,
    )

    fr_api.add_resource(RegisterResource, "/api/users")
    fr_api.add_resource(LoginResource, "/api/users/login")
    fr_api.add_resource(CurrentUserResource, "/api/users/me")
    fr_api.add_resource(UserSearchResource, "/api/users/search")
    fr_api.add_resource(UserResource, "/api/users/<int:user_id>")
    fr_api.add_resource(ProfilePictureResource, "/api/users/profile-picture")
    fr_api.add_resource(FriendResource, "/api/users/friends/<int:user_id>")
    fr_api.add_resource(FriendRequestListResource, "/api/users/friend-requests")
    fr_api.add_resource(FriendRequestResource, "/api/users/friend-requests/<int:user_id>")
    fr_api.add_resource(
        FriendRequestAcceptResource, "/api/users/friend-requests/<int:user_id>/accept"
    )
    fr_api.add_resource(
        FriendRequestRejectResource, "/api/users/friend-requests/<int:user_id>/reject"
    )

    fr_api.add_resource(GroupListResource, "/api/groups")
    fr_api.add_resource(MyGroupsResource, "/api/groups/my")
    fr_api.add_resource(GroupSearchResource, "/api/groups/search")
    fr_api.add_resource(GroupInvitationListResource, "/api/groups/invitations")
    fr_api.add_resource(GroupResource, "/api/groups/<int:group_id>")
    fr_api.add_resource(GroupJoinResource, "/api/groups/<int:group_id>/join")
    fr_api.add_resource(
        GroupInviteResource, "/api/groups/<int:group_id>/invite/<int:user_id>"
    )
    fr_api.add_resource(
        GroupInvitationResponseResource, "/api/groups/<int:group_id>/invitation"
    )
    fr_api.add_resource(
        GroupApproveResource, "/api/groups/<int:group_id>/approve/<int:user_id>"
    )
    fr_api.add_resource(
        GroupRejectResource, "/api/groups/<int:group_id>/reject/<int:user_id>"
    )
    fr_api.add_resource(
        GroupMemberResource, "/api/groups/<int:group_id>/members/<int:user_id>"
    )
    fr_api.add_resource(GroupLeaveResource, "/api/groups/<int:group_id>/leave")

    fr_api.add_resource(PostListResource, "/api/posts")
    fr_api.add_resource(PostSearchResource, "/api/posts/search")
    fr_api.add_resource(PostMediaUploadResource, "/api/posts/media-upload")
    fr_api.add_resource(PostResource, "/api/posts/<int:post_id>")
    fr_api.add_resource(PostLikeResource, "/api/posts/like/<int:post_id>")
    fr_api.add_resource(PostUnlikeResource, "/api/posts/unlike/<int:post_id>")
    fr_api.add_resource(CommentListResource, "/api/posts/comment/<int:post_id>")
    fr_api.add_resource(
        CommentResource, "/api/posts/comment/<int:post_id>/<int:comment_id>"
    )
    fr_api.add_resource(UserPostsResource, "/api/posts/user/<int:user_id>")
    fr_api.add_resource(GroupPostsResource, "/api/posts/group/<int:group_id>")

    fr_api.add_resource(MessageListResource, "/api/messages")
    fr_api.add_resource(UnreadMessageCountResource, "/api/messages/unread")
    fr_api.add_resource(ConversationResource, "/api/messages/<int:user_id>")
    fr_api.add_resource(MarkConversationReadResource, "/api/messages/read/<int:user_id>")
    fr_api.add_resource(MessageResource, "/api/messages/message/<int:message_id>")

    fr_api.add_resource(PostsPerMonthStatsResource, "/api/stats/posts/monthly")
    fr_api.add_resource(GroupsByMembersStatsResource, "/api/stats/groups/members")
    fr_api.add_resource(ActiveUsersStatsResource, "/api/stats/users/active")
    fr_api.add_resource(PostEngagementStatsResource, "/api/stats/posts/engagement")

    from .services.errors import SocialHubError

    @app.errorhandler(SocialHubError)
    def handle_social_hub_error(error):
        return jsonify(error.data), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return error
        app.logger.error(
            f"Unhandled exception: {type(error).__name__}: {error}", exc_info=True
        )
        db.session.rollback()
        return jsonify({"message": "Internal server error"}), 500

    @app.route("/uploads/<path:filename>")
    def uploaded_file(filename):
        return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)

    @app.route("/")
    def index():
        return jsonify({"message": "API Running"})

    for folder_key in [
        "UPLOAD_FOLDER",
        "PROFILE_PICS_FOLDER",
        "POST_MEDIA_FOLDER",
    ]:
        folder_path = os.path.abspath(app.config[folder_key])
        app.config[folder_key] = folder_path
        if not os.path.exists(folder_path):
            os.makedirs(folder_path)
            app.logger.info(f"Created folder: {folder_path}")

    return app
