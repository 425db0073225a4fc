from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse
from flask import current_app
from sqlalchemy import and_, or_

from .. import db
from ..core.utils import commit_session, contains_pattern, media_type_for, remove_upload, save_upload
from ..models.db_models import Comment, Group, Like, Post
from .errors import (
    AccessDenied,
    AlreadyLiked,
    CommentNotFound,
    InvalidInput,
    NotAuthorized,
    NotLiked,
    PostNotFound,
)
from .group_service import get_group_or_404, is_member
from .user_service import get_user

YOUTUBE_EMBED_URL = "https://www.youtube.com/embed/{}"


def _now():
    return datetime.now(timezone.utc)


def normalize_youtube_url(url):
    """Returns the embed URL for a YouTube watch, short or embed link."""
    url = (url or "").strip()
    video_id = ""
    if "youtube.com/watch" in url:
        video_id = parse_qs(urlparse(url).query).get("v", [""])[0]
    elif "youtu.be/" in url:
        video_id = url.split("youtu.be/", 1)[1].split("?")[0].split("/")[0]
    elif "youtube.com/embed/" in url:
        video_id = url.split("youtube.com/embed/", 1)[1].split("?")[0].split("/")[0]

    if not video_id:
        raise InvalidInput("Invalid YouTube URL")
    return YOUTUBE_EMBED_URL.format(video_id)


def _clean_text(text):
    text = (text or "").strip()
    if not text:
        raise InvalidInput("Text is required")
    max_length = current_app.config["POST_TEXT_MAX_LENGTH"]
    if len(text) > max_length:
        raise InvalidInput(f"Post text cannot exceed {max_length} characters")
    return text


def _clean_media(media_type, media_url):
    media_type = media_type or "none"
    media_url = media_url or ""
    if media_type not in Post.MEDIA_TYPES:
        raise InvalidInput(f"Unsupported media type '{media_type}'")
    if media_type == "youtube":
        media_url = normalize_youtube_url(media_url)
    elif media_type == "none":
        media_url = ""
    elif not media_url:
        raise InvalidInput("A media URL is required for image and video posts")
    return media_type, media_url


def can_view(post, viewer, member_group_ids=None):
    if post.group is None or not post.group.is_private:
        return True
    if member_group_ids is not None:
        return post.group_id in member_group_ids
    return is_member(post.group, viewer.id)


def _check_access(post, viewer):
    if not can_view(post, viewer):
        current_app.logger.warning(
            f"User {viewer.id} denied access to post {post.id} in private group {post.group_id}"
        )
        raise AccessDenied("Access denied")


def get_post_or_404(post_id):
    post = db.session.get(Post, post_id)
    if not post:
        raise PostNotFound()
    return post


def create_post(author, text, group_id=None, media_type=None, media_url=None):
    text = _clean_text(text)
    media_type, media_url = _clean_media(media_type, media_url)

    if group_id:
        group = get_group_or_404(group_id)
        if not is_member(group, author.id):
            current_app.logger.warning(
                f"User {author.id} tried to post in group {group.id} without being a member"
            )
            raise AccessDenied("You must be a member to post")

    post = Post(
        user_id=author.id,
        group_id=group_id or None,
        text=text,
        media_type=media_type,
        media_url=media_url,
    )
    db.session.add(post)
    commit_session(f"creating post for user {author.id}")
    current_app.logger.info(
        f"User {author.id} created post {post.id}"
        + (f" in group {post.group_id}" if post.group_id else "")
    )
    return post


def get_feed(viewer):
    """Own posts, friends' non-group posts, and posts of visible groups.

    Private-group posts are excluded by the query and then re-checked in
    memory, because a group may turn private between the two reads.
    """
    friend_ids = viewer.get_friend_ids()
    member_group_ids = viewer.get_group_ids()
    public_group_ids = {
        group_id
        for (group_id,) in db.session.query(Group.id).filter(
            Group.is_private.is_(False)
        )
    }
    visible_group_ids = member_group_ids | public_group_ids

    posts = (
        Post.query.filter(
            or_(
                Post.user_id == viewer.id,
                and_(Post.user_id.in_(list(friend_ids)), Post.group_id.is_(None)),
                Post.group_id.in_(list(visible_group_ids)),
            ),
            or_(Post.group_id.is_(None), Post.group_id.in_(list(visible_group_ids))),
        )
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )
    return [post for post in posts if can_view(post, viewer, member_group_ids)]


def get_post(post_id, viewer):
    post = get_post_or_404(post_id)
    _check_access(post, viewer)
    return post


def update_post(post_id, actor, text=None, media_type=None, media_url=None):
    post = get_post_or_404(post_id)
    if post.user_id != actor.id:
        current_app.logger.warning(
            f"User {actor.id} tried to edit post {post.id} owned by user {post.user_id}"
        )
        raise NotAuthorized()

    if text:
        post.text = _clean_text(text)
    if media_type:
        post.media_type, post.media_url = _clean_media(
            media_type, media_url if media_url is not None else post.media_url
        )
    elif media_url:
        post.media_type, post.media_url = _clean_media(post.media_type, media_url)
    post.edited_at = _now()

    commit_session(f"updating post {post.id}")
    current_app.logger.info(f"User {actor.id} edited post {post.id}")
    return post


def _is_group_admin(post, user):
    return post.group is not None and post.group.admin_id == user.id


def delete_post(post_id, actor):
    post = get_post_or_404(post_id)
    if post.user_id != actor.id and not _is_group_admin(post, actor):
        current_app.logger.warning(
            f"User {actor.id} tried to delete post {post.id} owned by user {post.user_id}"
        )
        raise NotAuthorized()

    media_url = post.media_url
    db.session.delete(post)
    commit_session(f"deleting post {post_id}")
    remove_upload(media_url, "POST_MEDIA_FOLDER")
    current_app.logger.info(f"User {actor.id} deleted post {post_id}")
    return {"message": "Post removed"}


def like_post(post_id, user):
    post = get_post_or_404(post_id)
    _check_access(post, user)
    if Like.query.filter_by(user_id=user.id, post_id=post.id).first():
        raise AlreadyLiked()

    db.session.add(Like(user_id=user.id, post_id=post.id))
    commit_session(f"liking post {post.id}", conflict_error=AlreadyLiked)
    current_app.logger.info(f"User {user.id} liked post {post.id}")
    return post


def unlike_post(post_id, user):
    post = get_post_or_404(post_id)
    _check_access(post, user)
    like = Like.query.filter_by(user_id=user.id, post_id=post.id).first()
    if not like:
        raise NotLiked()

    db.session.delete(like)
    commit_session(f"unliking post {post.id}")
    current_app.logger.info(f"User {user.id} unliked post {post.id}")
    return post


def _comment_text(text):
    text = (text or "").strip()
    if not text:
        raise InvalidInput("Text is required")
    return text


def _get_comment(post, comment_id):
    comment = db.session.get(Comment, comment_id)
    if not comment or comment.post_id != post.id:
        raise CommentNotFound()
    return comment


def add_comment(post_id, user, text):
    post = get_post_or_404(post_id)
    _check_access(post, user)
    comment = Comment(text=_comment_text(text), user_id=user.id, post_id=post.id)
    db.session.add(comment)
    commit_session(f"commenting on post {post.id}")
    current_app.logger.info(f"User {user.id} commented on post {post.id}")
    return post


def edit_comment(post_id, comment_id, user, text):
    post = get_post_or_404(post_id)
    _check_access(post, user)
    comment = _get_comment(post, comment_id)
    if comment.user_id != user.id:
        raise NotAuthorized()

    comment.text = _comment_text(text)
    comment.edited_at = _now()
    commit_session(f"editing comment {comment.id}")
    current_app.logger.info(f"User {user.id} edited comment {comment.id} on post {post.id}")
    return post


def delete_comment(post_id, comment_id, user):
    post = get_post_or_404(post_id)
    comment = _get_comment(post, comment_id)
    if (
        comment.user_id != user.id
        and post.user_id != user.id
        and not _is_group_admin(post, user)
    ):
        current_app.logger.warning(
            f"User {user.id} tried to delete comment {comment.id} on post {post.id}"
        )
        raise NotAuthorized()

    db.session.delete(comment)
    commit_session(f"deleting comment {comment_id}")
    current_app.logger.info(f"User {user.id} deleted comment {comment_id} on post {post.id}")
    return post


def get_user_posts(user_id, viewer):
    author = get_user(user_id)
    member_group_ids = viewer.get_group_ids()
    posts = (
        Post.query.filter_by(user_id=author.id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )
    return [post for post in posts if can_view(post, viewer, member_group_ids)]


def get_group_posts(group_id, viewer):
    group = get_group_or_404(group_id)
    if group.is_private and not is_member(group, viewer.id):
        raise AccessDenied("Access denied")
    return (
        Post.query.filter_by(group_id=group.id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )


def search_posts(viewer, text):
    term = (text or "").strip()
    if not term:
        raise InvalidInput("Search term required")
    member_group_ids = viewer.get_group_ids()
    return (
        Post.query.filter(
            Post.text.ilike(contains_pattern(term), escape="\\"),
            or_(
                Post.user_id == viewer.id,
                Post.group_id.is_(None),
                Post.group_id.in_(list(member_group_ids)),
            ),
        )
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(current_app.config["SEARCH_RESULT_LIMIT"])
        .all()
    )


def save_post_media(file_storage):
    if file_storage is None or not file_storage.filename:
        raise InvalidInput("No file uploaded")
    media_type = media_type_for(file_storage.filename)
    if media_type is None:
        raise InvalidInput("Only image and video files are allowed")

    media_url = save_upload(
        file_storage, "POST_MEDIA_FOLDER", current_app.config["POST_MEDIA_MAX_SIZE"]
    )
    return {"media_url": media_url, "media_type": media_type}
