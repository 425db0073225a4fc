import re
from flask import current_app
from flask_jwt_extended import create_access_token
from sqlalchemy import delete, or_, update

from .. import db
from ..core.utils import (
    allowed_image,
    commit_session,
    contains_pattern,
    remove_upload,
    save_upload,
)
from ..models.db_models import (
    Comment,
    Friendship,
    Group,
    GroupMembership,
    Like,
    Message,
    Post,
    User,
)
from .group_service import delete_group
from .errors import (
    AlreadyFriends,
    Conflict,
    EmailInUse,
    FriendRequestAlreadySent,
    FriendRequestNotFound,
    InvalidInput,
    NotAuthorized,
    NotFriends,
    UserNotFound,
    UsernameTaken,
)
from .notifications_service import emit_to_user

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def issue_token(user):
    return create_access_token(identity=str(user.id))


def register_user(username, email, password):
    """Creates an account and returns ``(user, access_token)``."""
    username = (username or "").strip()
    email = (email or "").strip().lower()
    password = password or ""

    if len(username) < MIN_USERNAME_LENGTH:
        raise InvalidInput(
            f"Username must be at least {MIN_USERNAME_LENGTH} characters long"
        )
    if not EMAIL_PATTERN.match(email):
        raise InvalidInput("Please include a valid email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(
            f"Please enter a password with {MIN_PASSWORD_LENGTH} or more characters"
        )

    if User.query.filter_by(email=email).first():
        raise EmailInUse()
    if User.query.filter_by(username=username).first():
        raise UsernameTaken()

    user = User(username=username, email=email)
    user.set_password(password)
    db.session.add(user)
    commit_session(f"registering user '{username}'", conflict_error=UsernameTaken)
    current_app.logger.info(f"Registered user {user.id} '{user.username}'")
    return user, issue_token(user)


def authenticate(email, password):
    email = (email or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password or ""):
        current_app.logger.warning(f"Failed login attempt for email '{email}'")
        raise InvalidInput("Invalid credentials")
    current_app.logger.info(f"User {user.id} logged in")
    return user, issue_token(user)


def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFound()
    return user


def update_profile(user_id, actor, bio=None, profile_picture=None):
    if actor.id != user_id:
        current_app.logger.warning(
            f"User {actor.id} tried to update the profile of user {user_id}"
        )
        raise NotAuthorized()
    user = get_user(user_id)
    if bio is not None:
        user.bio = bio
    if profile_picture is not None:
        user.profile_picture = profile_picture
    commit_session(f"updating profile of user {user.id}")
    current_app.logger.info(f"User {user.id} updated their profile")
    return user


def delete_user(user_id, actor):
    """Deletes a user and everything that references them.

    Groups the user administers are deleted through the group lifecycle, so
    their memberships and posts go with them.
    """
    if actor.id != user_id and not actor.is_admin:
        current_app.logger.warning(f"User {actor.id} tried to delete user {user_id}")
        raise NotAuthorized()
    user = get_user(user_id)
    actor_id = actor.id

    administered_ids = [g.id for g in Group.query.filter_by(admin_id=user.id).all()]
    for group_id in administered_ids:
        delete_group(group_id, actor, commit=False)

    db.session.execute(
        delete(GroupMembership)
        .where(GroupMembership.user_id == user.id)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        update(GroupMembership)
        .where(GroupMembership.invited_by_id == user.id)
        .values(invited_by_id=None)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(Friendship)
        .where(or_(Friendship.user_id == user.id, Friendship.friend_id == user.id))
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(Like)
        .where(Like.user_id == user.id)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(Comment)
        .where(Comment.user_id == user.id)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        delete(Message)
        .where(or_(Message.sender_id == user.id, Message.receiver_id == user.id))
        .execution_options(synchronize_session=False)
    )
    # Bulk deletes above bypass the session, so reload before cascading posts
    db.session.expire_all()
    for post in Post.query.filter_by(user_id=user.id).all():
        db.session.delete(post)

    profile_picture = user.profile_picture
    db.session.delete(user)
    commit_session(f"deleting user {user_id}")
    remove_upload(profile_picture, "PROFILE_PICS_FOLDER")
    for group_id in administered_ids:
        current_app.logger.info(f"User {actor_id} deleted group {group_id}")
    current_app.logger.info(f"User {actor_id} deleted user {user_id}")


def search_users(username):
    term = (username or "").strip()
    if not term:
        raise InvalidInput("Search term required")
    return (
        User.query.filter(User.username.ilike(contains_pattern(term), escape="\\"))
        .order_by(User.username)
        .limit(current_app.config["SEARCH_RESULT_LIMIT"])
        .all()
    )


def upload_profile_picture(user, file_storage):
    if file_storage is None or not file_storage.filename:
        raise InvalidInput("No file uploaded")
    if not allowed_image(file_storage.filename):
        raise InvalidInput("Only image files are allowed")

    url = save_upload(
        file_storage,
        "PROFILE_PICS_FOLDER",
        current_app.config["PROFILE_PICTURE_MAX_SIZE"],
    )
    previous = user.profile_picture
    user.profile_picture = url
    commit_session(f"storing profile picture of user {user.id}")
    if previous and previous != url:
        remove_upload(previous, "PROFILE_PICS_FOLDER")
    current_app.logger.info(f"User {user.id} uploaded profile picture {url}")
    return user


def delete_profile_picture(user):
    if not user.profile_picture:
        raise InvalidInput("No profile picture to delete")
    previous = user.profile_picture
    user.profile_picture = ""
    commit_session(f"clearing profile picture of user {user.id}")
    remove_upload(previous, "PROFILE_PICS_FOLDER")
    current_app.logger.info(f"User {user.id} deleted their profile picture")
    return user


# Friends


def friendship_between(user_id, other_id):
    return Friendship.query.filter(
        or_(
            (Friendship.user_id == user_id) & (Friendship.friend_id == other_id),
            (Friendship.user_id == other_id) & (Friendship.friend_id == user_id),
        )
    ).first()


def _other_user(user, other_id):
    if other_id == user.id:
        raise InvalidInput("You cannot befriend yourself")
    return get_user(other_id)


def add_friend(user, other_id):
    """Befriends ``other_id`` directly, accepting any pending request between them."""
    other = _other_user(user, other_id)
    friendship = friendship_between(user.id, other.id)
    if friendship and friendship.status == Friendship.ACCEPTED:
        raise AlreadyFriends()

    if friendship:
        friendship.status = Friendship.ACCEPTED
    else:
        db.session.add(
            Friendship(user_id=user.id, friend_id=other.id, status=Friendship.ACCEPTED)
        )
    commit_session(
        f"adding friendship {user.id} <-> {other.id}", conflict_error=AlreadyFriends
    )
    current_app.logger.info(f"User {user.id} is now friends with user {other.id}")
    return user


def remove_friend(user, other_id):
    other = get_user(other_id)
    friendship = friendship_between(user.id, other.id)
    if not friendship or friendship.status != Friendship.ACCEPTED:
        raise NotFriends()
    db.session.delete(friendship)
    commit_session(f"removing friendship {user.id} <-> {other.id}")
    current_app.logger.info(f"User {user.id} removed user {other.id} from friends")
    return user


def send_friend_request(sender, target_id):
    if target_id == sender.id:
        raise InvalidInput("You cannot send a friend request to yourself")
    target = get_user(target_id)

    friendship = friendship_between(sender.id, target.id)
    if friendship and friendship.status == Friendship.ACCEPTED:
        raise AlreadyFriends()
    if friendship and friendship.user_id == sender.id:
        raise FriendRequestAlreadySent()
    if friendship:
        raise Conflict("This user has already sent you a friend request")

    db.session.add(
        Friendship(user_id=sender.id, friend_id=target.id, status=Friendship.PENDING)
    )
    commit_session(
        f"sending friend request {sender.id} -> {target.id}",
        conflict_error=FriendRequestAlreadySent,
    )
    current_app.logger.info(f"User {sender.id} sent a friend request to user {target.id}")

    emit_to_user(
        target.id,
        "friend_request",
        {"from": {**sender.to_summary_dict(), "bio": sender.bio}},
    )
    return {"message": "Friend request sent"}


def _pending_request_from(user, requester_id):
    return Friendship.query.filter_by(
        user_id=requester_id, friend_id=user.id, status=Friendship.PENDING
    ).first()


def accept_friend_request(user, requester_id):
    requester = get_user(requester_id)
    friendship = _pending_request_from(user, requester.id)
    if not friendship:
        raise FriendRequestNotFound()

    result = db.session.execute(
        update(Friendship)
        .where(Friendship.id == friendship.id, Friendship.status == Friendship.PENDING)
        .values(status=Friendship.ACCEPTED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise FriendRequestNotFound()
    commit_session(f"accepting friend request {requester.id} -> {user.id}")
    current_app.logger.info(
        f"User {user.id} accepted the friend request of user {requester.id}"
    )
    return {"message": "Friend request accepted"}


def reject_friend_request(user, requester_id):
    friendship = _pending_request_from(user, requester_id)
    if not friendship:
        raise FriendRequestNotFound()

    result = db.session.execute(
        delete(Friendship)
        .where(Friendship.id == friendship.id, Friendship.status == Friendship.PENDING)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise FriendRequestNotFound()
    commit_session(f"rejecting friend request {requester_id} -> {user.id}")
    current_app.logger.info(
        f"User {user.id} rejected the friend request of user {requester_id}"
    )
    return {"message": "Friend request rejected"}


def list_friend_requests(user):
    return (
        Friendship.query.filter_by(friend_id=user.id, status=Friendship.PENDING)
        .order_by(Friendship.created_at.desc())
        .all()
    )
