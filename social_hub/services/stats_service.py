"""Read-only aggregate statistics.

The four aggregates are cheap enough to compute per request on small sites,
but run.py keeps a snapshot fresh through the background scheduler and the
endpoints prefer it while it is younger than STATS_SNAPSHOT_MAX_AGE_SECONDS.
"""
from datetime import datetime, timezone
from flask import current_app
from sqlalchemy import func

from .. import db
from ..models.db_models import Group, GroupMembership, MembershipState, Post, User

TOP_N = 10
PREVIEW_LENGTH = 50


def posts_per_month():
    counts = {}
    for (created_at,) in db.session.query(Post.created_at):
        key = (created_at.year, created_at.month)
        counts[key] = counts.get(key, 0) + 1
    return [
        {"month": f"{month}/{year}", "count": counts[(year, month)]}
        for (year, month) in sorted(counts)
    ]


def groups_by_members():
    member_count = func.count(GroupMembership.id)
    rows = (
        db.session.query(Group, member_count)
        .outerjoin(
            GroupMembership,
            (GroupMembership.group_id == Group.id)
            & (GroupMembership.state == MembershipState.MEMBER),
        )
        .group_by(Group.id)
        .order_by(member_count.desc(), Group.id)
        .all()
    )
    return [
        {
            "id": group.id,
            "name": group.name,
            "member_count": count,
            "admin": group.admin.username if group.admin else None,
            "is_private": group.is_private,
        }
        for group, count in rows
    ]


def most_active_users():
    post_count = func.count(Post.id)
    rows = (
        db.session.query(User, post_count)
        .join(Post, Post.user_id == User.id)
        .group_by(User.id)
        .order_by(post_count.desc(), User.id)
        .limit(TOP_N)
        .all()
    )
    return [{"user": user.to_summary_dict(), "post_count": count} for user, count in rows]


def _preview(text):
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH] + "..."
    return text


def post_engagement():
    entries = []
    for post in Post.query.all():
        likes = len(post.likes)
        comments = len(post.comments)
        entries.append(
            {
                "id": post.id,
                "text": _preview(post.text),
                "user": post.author.to_summary_dict() if post.author else None,
                "likes": likes,
                "comments": comments,
                "total_engagement": likes + comments,
                "created_at": post.created_at.isoformat() if post.created_at else None,
            }
        )
    entries.sort(key=lambda entry: (-entry["total_engagement"], entry["id"]))
    return entries[:TOP_N]


STATS = {
    "posts_per_month": posts_per_month,
    "groups_by_members": groups_by_members,
    "most_active_users": most_active_users,
    "post_engagement": post_engagement,
}


def refresh_stats_snapshot():
    """Recomputes every aggregate and stores them on the application."""
    data = {name: compute() for name, compute in STATS.items()}
    current_app.stats_snapshot = {
        "computed_at": datetime.now(timezone.utc),
        "data": data,
    }
    current_app.logger.info(
        f"Stats snapshot refreshed: {len(data['groups_by_members'])} groups, "
        f"{len(data['most_active_users'])} active users"
    )
    return current_app.stats_snapshot


def _fresh_snapshot():
    snapshot = getattr(current_app, "stats_snapshot", None)
    if not snapshot:
        return None
    age = (datetime.now(timezone.utc) - snapshot["computed_at"]).total_seconds()
    if age > current_app.config["STATS_SNAPSHOT_MAX_AGE_SECONDS"]:
        current_app.logger.debug(f"Stats snapshot is stale ({age:.0f}s old)")
        return None
    return snapshot


def get_stat(name):
    """Serves ``name`` from a fresh snapshot, computing it live otherwise."""
    if name not in STATS:
        raise KeyError(name)
    snapshot = _fresh_snapshot()
    if snapshot is not None:
        return snapshot["data"][name]
    return STATS[name]()
