"""Group membership and invitation lifecycle.

Every (user, group) pair has at most one GroupMembership row whose state is
one of pending, invited or member; the admin holds a member row with the
admin role. Transitions on an existing row are written as compare-and-swap
statements guarded by the expected state, so two requests racing on the same
row cannot both succeed.
"""
from datetime import datetime, timezone
from flask import current_app
from sqlalchemy import delete, or_, update

from .. import db
from ..core.utils import commit_session, contains_pattern
from ..models.db_models import (
    Group,
    GroupMembership,
    MembershipRole,
    MembershipState,
    Post,
    User,
)
from .errors import (
    AdminCannotLeave,
    AlreadyInvited,
    AlreadyMember,
    AlreadyPending,
    CannotRemoveAdmin,
    GroupNotFound,
    InvalidInput,
    InvitationNotFound,
    MemberNotFound,
    NotAMember,
    NotAuthorized,
    RequestNotFound,
    TargetAlreadyMember,
    UserNotFound,
)

STATE_NONE = "none"
STATE_PENDING_REQUEST = "pending_request"
STATE_INVITED = "invited"
STATE_MEMBER = "member"
STATE_ADMIN_MEMBER = "admin_member"


def _now():
    return datetime.now(timezone.utc)


def get_group_or_404(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        raise GroupNotFound()
    return group


def get_membership(group_id, user_id):
    return GroupMembership.query.filter_by(group_id=group_id, user_id=user_id).first()


def get_membership_state(group, user):
    """Returns the lifecycle state of ``user`` in ``group`` as a string."""
    if group.admin_id == user.id:
        return STATE_ADMIN_MEMBER
    membership = get_membership(group.id, user.id)
    if membership is None:
        return STATE_NONE
    return {
        MembershipState.PENDING: STATE_PENDING_REQUEST,
        MembershipState.INVITED: STATE_INVITED,
        MembershipState.MEMBER: STATE_MEMBER,
    }[membership.state]


def is_member(group, user_id):
    if group.admin_id == user_id:
        return True
    return (
        GroupMembership.query.filter_by(
            group_id=group.id, user_id=user_id, state=MembershipState.MEMBER
        ).first()
        is not None
    )


def _is_admin(group, user):
    return group.admin_id == user.id


def _swap_state(membership, expected_state, error_cls, **values):
    """Moves ``membership`` out of ``expected_state`` or raises ``error_cls``."""
    result = db.session.execute(
        update(GroupMembership)
        .where(
            GroupMembership.id == membership.id,
            GroupMembership.state == expected_state,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        current_app.logger.warning(
            f"Membership {membership.id} left state {expected_state.value} "
            f"before the transition could be applied"
        )
        raise error_cls()


def _delete_in_state(membership, expected_state, error_cls):
    """Deletes ``membership`` only while it is still in ``expected_state``."""
    result = db.session.execute(
        delete(GroupMembership)
        .where(
            GroupMembership.id == membership.id,
            GroupMembership.state == expected_state,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        current_app.logger.warning(
            f"Membership {membership.id} left state {expected_state.value} "
            f"before it could be removed"
        )
        raise error_cls()


def create_group(admin, name, description, is_private=False):
    name = (name or "").strip()
    description = (description or "").strip()
    if not name or not description:
        raise InvalidInput("Name and description are required")

    group = Group(
        name=name,
        description=description,
        is_private=bool(is_private),
        admin_id=admin.id,
    )
    db.session.add(group)
    db.session.flush()
    db.session.add(
        GroupMembership(
            group_id=group.id,
            user_id=admin.id,
            state=MembershipState.MEMBER,
            role=MembershipRole.ADMIN,
            joined_at=_now(),
        )
    )
    commit_session(f"creating group '{name}'")
    current_app.logger.info(
        f"User {admin.id} created group {group.id} '{group.name}' "
        f"(private={group.is_private})"
    )
    return group


def _visible_to(viewer):
    member_group_ids = list(viewer.get_group_ids())
    return or_(Group.is_private.is_(False), Group.id.in_(member_group_ids))


def list_visible_groups(viewer):
    return (
        Group.query.filter(_visible_to(viewer))
        .order_by(Group.created_at.desc(), Group.id.desc())
        .all()
    )


def list_user_groups(user):
    return user.get_groups()


def get_group_view(group_id, viewer):
    group = get_group_or_404(group_id)
    if group.is_private and not is_member(group, viewer.id):
        current_app.logger.debug(
            f"User {viewer.id} received restricted view of private group {group.id}"
        )
        return group.to_restricted_dict()
    return group.to_dict()


def update_group(group_id, actor, name=None, description=None, is_private=None):
    group = get_group_or_404(group_id)
    if not _is_admin(group, actor):
        current_app.logger.warning(
            f"User {actor.id} tried to update group {group.id} without being its admin"
        )
        raise NotAuthorized()

    if name and name.strip():
        group.name = name.strip()
    if description and description.strip():
        group.description = description.strip()
    if is_private is not None:
        group.is_private = bool(is_private)

    commit_session(f"updating group {group.id}")
    current_app.logger.info(f"User {actor.id} updated group {group.id}")
    return group


def delete_group(group_id, actor, commit=True):
    """Deletes the group, its memberships and its posts.

    Site admins may delete any group; everyone else must be the group admin.
    With ``commit=False`` the caller commits and logs the deletion.
    """
    group = get_group_or_404(group_id)
    if not _is_admin(group, actor) and not actor.is_admin:
        current_app.logger.warning(
            f"User {actor.id} tried to delete group {group.id} without being its admin"
        )
        raise NotAuthorized()

    db.session.execute(
        delete(GroupMembership)
        .where(GroupMembership.group_id == group.id)
        .execution_options(synchronize_session=False)
    )
    for post in Post.query.filter_by(group_id=group.id).all():
        db.session.delete(post)
    db.session.delete(group)

    if commit:
        commit_session(f"deleting group {group_id}")
        current_app.logger.info(f"User {actor.id} deleted group {group_id}")


def request_to_join(group_id, user):
    group = get_group_or_404(group_id)
    membership = get_membership(group.id, user.id)
    invitation_cancelled = False

    if _is_admin(group, user) or (
        membership and membership.state == MembershipState.MEMBER
    ):
        raise AlreadyMember()
    if membership and membership.state == MembershipState.PENDING:
        raise AlreadyPending()

    if membership and membership.state == MembershipState.INVITED:
        # The held invitation becomes a join request in place
        _swap_state(
            membership,
            MembershipState.INVITED,
            AlreadyPending,
            state=MembershipState.PENDING,
            invited_by_id=None,
            created_at=_now(),
        )
        invitation_cancelled = True
    else:
        db.session.add(
            GroupMembership(
                group_id=group.id,
                user_id=user.id,
                state=MembershipState.PENDING,
                role=MembershipRole.MEMBER,
            )
        )

    commit_session(f"recording join request of user {user.id} for group {group.id}")
    current_app.logger.info(
        f"User {user.id} requested to join group {group.id}"
        + (" (pending invitation cancelled)" if invitation_cancelled else "")
    )
    return {
        "message": "Join request sent to group admin",
        "invitation_cancelled": invitation_cancelled,
    }


def invite(group_id, inviter, target_id):
    group = get_group_or_404(group_id)
    if not is_member(group, inviter.id):
        current_app.logger.warning(
            f"User {inviter.id} tried to invite to group {group.id} without being a member"
        )
        raise NotAuthorized("Only members can invite others to join")

    target = db.session.get(User, target_id)
    if not target:
        raise UserNotFound()

    membership = get_membership(group.id, target.id)
    request_cancelled = False

    if _is_admin(group, target) or (
        membership and membership.state == MembershipState.MEMBER
    ):
        raise TargetAlreadyMember()
    if membership and membership.state == MembershipState.INVITED:
        raise AlreadyInvited()

    if membership and membership.state == MembershipState.PENDING:
        _swap_state(
            membership,
            MembershipState.PENDING,
            AlreadyInvited,
            state=MembershipState.INVITED,
            invited_by_id=inviter.id,
            created_at=_now(),
        )
        request_cancelled = True
    else:
        db.session.add(
            GroupMembership(
                group_id=group.id,
                user_id=target.id,
                state=MembershipState.INVITED,
                role=MembershipRole.MEMBER,
                invited_by_id=inviter.id,
            )
        )

    commit_session(f"inviting user {target.id} to group {group.id}")
    current_app.logger.info(
        f"User {inviter.id} invited user {target.id} to group {group.id}"
        + (" (pending request cancelled)" if request_cancelled else "")
    )

    from .notifications_service import notify_group_invitation

    notify_group_invitation(group, inviter, target)

    return {
        "message": "Invitation sent successfully",
        "request_cancelled": request_cancelled,
    }


def respond_to_invitation(group_id, user, accept):
    group = get_group_or_404(group_id)
    membership = get_membership(group.id, user.id)
    if not membership or membership.state != MembershipState.INVITED:
        raise InvitationNotFound()

    if accept:
        _swap_state(
            membership,
            MembershipState.INVITED,
            InvitationNotFound,
            state=MembershipState.MEMBER,
            joined_at=_now(),
        )
        commit_session(f"accepting invitation of user {user.id} to group {group.id}")
        current_app.logger.info(
            f"User {user.id} accepted invitation and joined group {group.id}"
        )
        return {"message": "Invitation accepted"}

    _delete_in_state(membership, MembershipState.INVITED, InvitationNotFound)
    commit_session(f"declining invitation of user {user.id} to group {group.id}")
    current_app.logger.info(f"User {user.id} declined invitation to group {group.id}")
    return {"message": "Invitation declined"}


def _pending_request(group, admin, user_id):
    if not _is_admin(group, admin):
        current_app.logger.warning(
            f"User {admin.id} tried to manage requests of group {group.id} without being its admin"
        )
        raise NotAuthorized()
    membership = get_membership(group.id, user_id)
    if not membership or membership.state != MembershipState.PENDING:
        raise RequestNotFound()
    return membership


def approve_request(group_id, admin, user_id):
    group = get_group_or_404(group_id)
    membership = _pending_request(group, admin, user_id)
    _swap_state(
        membership,
        MembershipState.PENDING,
        RequestNotFound,
        state=MembershipState.MEMBER,
        joined_at=_now(),
    )
    commit_session(f"approving user {user_id} for group {group.id}")
    current_app.logger.info(
        f"Admin {admin.id} approved user {user_id} into group {group.id}"
    )
    return {"message": "User approved"}


def reject_request(group_id, admin, user_id):
    group = get_group_or_404(group_id)
    membership = _pending_request(group, admin, user_id)
    _delete_in_state(membership, MembershipState.PENDING, RequestNotFound)
    commit_session(f"rejecting user {user_id} for group {group.id}")
    current_app.logger.info(
        f"Admin {admin.id} rejected join request of user {user_id} for group {group.id}"
    )
    return {"message": "Request rejected"}


def remove_member(group_id, admin, user_id):
    group = get_group_or_404(group_id)
    if not _is_admin(group, admin):
        current_app.logger.warning(
            f"User {admin.id} tried to remove a member of group {group.id} without being its admin"
        )
        raise NotAuthorized()
    if user_id == group.admin_id:
        raise CannotRemoveAdmin()

    membership = get_membership(group.id, user_id)
    if not membership or membership.state != MembershipState.MEMBER:
        raise MemberNotFound()

    _delete_in_state(membership, MembershipState.MEMBER, MemberNotFound)
    commit_session(f"removing user {user_id} from group {group.id}")
    current_app.logger.info(
        f"Admin {admin.id} removed user {user_id} from group {group.id}"
    )
    return {"message": "Member removed from group"}


def leave_group(group_id, user):
    group = get_group_or_404(group_id)
    if _is_admin(group, user):
        raise AdminCannotLeave()

    membership = get_membership(group.id, user.id)
    if not membership or membership.state != MembershipState.MEMBER:
        raise NotAMember()

    _delete_in_state(membership, MembershipState.MEMBER, NotAMember)
    commit_session(f"removing user {user.id} from group {group.id} on leave")
    current_app.logger.info(f"User {user.id} left group {group.id}")
    return {"message": "Successfully left the group"}


def list_invitations(user):
    memberships = (
        GroupMembership.query.filter_by(user_id=user.id, state=MembershipState.INVITED)
        .order_by(GroupMembership.created_at.desc())
        .all()
    )
    return [
        {
            "group": {
                "id": m.group.id,
                "name": m.group.name,
                "description": m.group.description,
                "is_private": m.group.is_private,
                "admin": m.group.admin.to_summary_dict() if m.group.admin else None,
            },
            "invitation": {
                "invited_at": m.created_at.isoformat() if m.created_at else None,
                "invited_by": (
                    m.invited_by.to_summary_dict() if m.invited_by else None
                ),
            },
        }
        for m in memberships
    ]


def search_groups(viewer, name):
    term = (name or "").strip()
    if not term:
        raise InvalidInput("Search term required")
    return (
        Group.query.filter(
            Group.name.ilike(contains_pattern(term), escape="\\"),
            _visible_to(viewer),
        )
        .order_by(Group.created_at.desc(), Group.id.desc())
        .limit(current_app.config["SEARCH_RESULT_LIMIT"])
        .all()
    )
