import enum
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash, check_password_hash

from .. import db


def _isoformat(value):
    return value.isoformat() if value else None


class MembershipState(enum.Enum):
    PENDING = "pending"
    INVITED = "invited"
    MEMBER = "member"


class MembershipRole(enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    profile_picture = db.Column(db.String(255), nullable=False, default="")
    bio = db.Column(db.Text, nullable=False, default="")
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    posts = db.relationship("Post", backref="author", lazy=True)

    # Friendship rows; pending rows are friend requests from user_id to friend_id
    sent_friend_requests = db.relationship(
        "Friendship",
        foreign_keys="Friendship.user_id",
        backref="requester",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    received_friend_requests = db.relationship(
        "Friendship",
        foreign_keys="Friendship.friend_id",
        backref="requested",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    memberships = db.relationship(
        "GroupMembership",
        foreign_keys="GroupMembership.user_id",
        back_populates="user",
        lazy="dynamic",
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.username}>"

    def get_friends(self):
        friends = []
        accepted_sent_requests = Friendship.query.filter_by(
            user_id=self.id, status=Friendship.ACCEPTED
        ).all()
        for fs in accepted_sent_requests:
            friends.append(fs.requested)

        accepted_received_requests = Friendship.query.filter_by(
            friend_id=self.id, status=Friendship.ACCEPTED
        ).all()
        for fs in accepted_received_requests:
            friends.append(fs.requester)

        return list(set(friends))

    def get_friend_ids(self):
        return {friend.id for friend in self.get_friends()}

    def get_groups(self):
        """Groups in which the user currently holds a member row (admin included)."""
        return (
            Group.query.join(GroupMembership, GroupMembership.group_id == Group.id)
            .filter(
                GroupMembership.user_id == self.id,
                GroupMembership.state == MembershipState.MEMBER,
            )
            .order_by(Group.created_at.desc(), Group.id.desc())
            .all()
        )

    def get_group_ids(self):
        return {
            m.group_id
            for m in self.memberships.filter_by(state=MembershipState.MEMBER).all()
        }

    def to_summary_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "profile_picture": self.profile_picture,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "bio": self.bio,
            "profile_picture": self.profile_picture,
            "is_admin": self.is_admin,
            "created_at": _isoformat(self.created_at),
            "friends": sorted(self.get_friend_ids()),
            "groups": sorted(self.get_group_ids()),
        }


class Friendship(db.Model):
    __tablename__ = "friendship"

    PENDING = "pending"
    ACCEPTED = "accepted"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    friend_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    created_at = db.Column(
        db.DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "friend_id", name="uq_user_friend"),
        db.CheckConstraint("user_id != friend_id", name="ck_user_not_friend_self"),
    )

    def __repr__(self):
        return f"<Friendship {self.user_id} to {self.friend_id} - {self.status}>"

    def to_request_dict(self):
        return {
            "id": self.id,
            "user": {**self.requester.to_summary_dict(), "bio": self.requester.bio},
            "sent_at": _isoformat(self.created_at),
        }


class Group(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    admin_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    admin = db.relationship("User", foreign_keys=[admin_id])

    memberships = db.relationship(
        "GroupMembership",
        back_populates="group",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="GroupMembership.created_at",
    )

    posts = db.relationship("Post", back_populates="group", lazy="dynamic")

    def __repr__(self):
        return f"<Group '{self.name}'>"

    def memberships_in_state(self, state):
        return self.memberships.filter_by(state=state).all()

    def member_count(self):
        return self.memberships.filter_by(state=MembershipState.MEMBER).count()

    def to_summary_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_private": self.is_private,
            "admin": self.admin.to_summary_dict() if self.admin else None,
            "member_count": self.member_count(),
            "created_at": _isoformat(self.created_at),
        }

    def to_dict(self):
        data = self.to_summary_dict()
        data["members"] = [
            m.to_member_dict()
            for m in self.memberships_in_state(MembershipState.MEMBER)
        ]
        data["pending_requests"] = [
            m.to_request_dict()
            for m in self.memberships_in_state(MembershipState.PENDING)
        ]
        data["invitations"] = [
            m.to_invitation_dict()
            for m in self.memberships_in_state(MembershipState.INVITED)
        ]
        data["restricted"] = False
        return data

    def to_restricted_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "is_private": True,
            "admin": self.admin.to_summary_dict() if self.admin else None,
            "members": [],
            "restricted": True,
            "message": "This is a private group you don't have access to",
        }


class GroupMembership(db.Model):
    """The single relationship record between a user and a group."""

    __tablename__ = "group_membership"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("group.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    state = db.Column(
        db.Enum(
            MembershipState,
            name="membership_state",
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
    )
    role = db.Column(
        db.Enum(
            MembershipRole,
            name="membership_role",
            values_callable=lambda roles: [r.value for r in roles],
        ),
        nullable=False,
        default=MembershipRole.MEMBER,
    )
    invited_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    joined_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "group_id", name="uq_membership_user_group"),
    )

    group = db.relationship("Group", back_populates="memberships")
    user = db.relationship("User", foreign_keys=[user_id], back_populates="memberships")
    invited_by = db.relationship("User", foreign_keys=[invited_by_id])

    def __repr__(self):
        return (
            f"<GroupMembership user={self.user_id} group={self.group_id} "
            f"state={self.state.value} role={self.role.value}>"
        )

    def to_member_dict(self):
        return {
            "user": self.user.to_summary_dict(),
            "role": self.role.value,
            "joined_at": _isoformat(self.joined_at),
        }

    def to_request_dict(self):
        return {
            "user": self.user.to_summary_dict(),
            "requested_at": _isoformat(self.created_at),
        }

    def to_invitation_dict(self):
        return {
            "user": self.user.to_summary_dict(),
            "invited_by": self.invited_by.to_summary_dict() if self.invited_by else None,
            "invited_at": _isoformat(self.created_at),
        }


class Post(db.Model):
    MEDIA_TYPES = ("none", "image", "video", "youtube")

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    group_id = db.Column(db.Integer, db.ForeignKey("group.id"), nullable=True)
    text = db.Column(db.Text, nullable=False)
    media_type = db.Column(db.String(20), nullable=False, default="none")
    media_url = db.Column(db.String(500), nullable=False, default="")
    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    edited_at = db.Column(db.DateTime, nullable=True)

    group = db.relationship("Group", back_populates="posts")
    comments = db.relationship(
        "Comment",
        backref="post",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )
    likes = db.relationship(
        "Like", backref="post", lazy=True, cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Post {self.id} by User {self.user_id}>"

    def liked_by(self, user_id):
        return any(like.user_id == user_id for like in self.likes)

    def to_dict(self):
        return {
            "id": self.id,
            "user": self.author.to_summary_dict() if self.author else None,
            "group": (
                {"id": self.group.id, "name": self.group.name} if self.group else None
            ),
            "text": self.text,
            "media_type": self.media_type,
            "media_url": self.media_url,
            "likes": [like.user_id for like in self.likes],
            "like_count": len(self.likes),
            "comments": [comment.to_dict() for comment in self.comments],
            "created_at": _isoformat(self.created_at),
            "edited_at": _isoformat(self.edited_at),
        }


class Comment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    edited_at = db.Column(db.DateTime, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey("post.id"), nullable=False)

    author = db.relationship("User")

    def __repr__(self):
        return f"<Comment {self.id} by User {self.user_id} on Post {self.post_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "post_id": self.post_id,
            "user": self.author.to_summary_dict() if self.author else None,
            "text": self.text,
            "created_at": _isoformat(self.created_at),
            "edited_at": _isoformat(self.edited_at),
        }


class Like(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey("post.id"), nullable=False)
    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (db.UniqueConstraint("user_id", "post_id", name="_user_post_uc"),)

    def __repr__(self):
        return f"<Like User {self.user_id} Post {self.post_id}>"


class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    room = db.Column(db.String(64), nullable=False, index=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(
        db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    sender = db.relationship("User", foreign_keys=[sender_id])
    receiver = db.relationship("User", foreign_keys=[receiver_id])

    def __repr__(self):
        return f"<Message {self.id} from {self.sender_id} to {self.receiver_id}>"

    def to_dict(self):
        return {
            "id": self.id,
            "sender": self.sender.to_summary_dict() if self.sender else None,
            "receiver": self.receiver.to_summary_dict() if self.receiver else None,
            "content": self.content,
            "room": self.room,
            "is_read": self.is_read,
            "created_at": _isoformat(self.created_at),
        }
