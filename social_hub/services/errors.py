from werkzeug.exceptions import HTTPException


class SocialHubError(HTTPException):
    """Base class for domain errors raised by the service layer.

    Subclasses carry an HTTP status code and a default message. The ``data``
    attribute is what Flask-RESTful and the app error handler serialise, so a
    raised error renders as ``{"message": ..., "error": <class name>}``.
    """

    code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(description=self.message)
        self.data = {"message": self.message, "error": type(self).__name__}


# Categories


class NotFound(SocialHubError):
    code = 404
    default_message = "Not found"


class NotAuthorized(SocialHubError):
    code = 403
    default_message = "Not authorized"


class Conflict(SocialHubError):
    code = 409
    default_message = "Conflict"


class InvalidInput(SocialHubError):
    code = 400
    default_message = "Invalid input"


class ServerError(SocialHubError):
    code = 500
    default_message = "Internal server error"


# Not found


class UserNotFound(NotFound):
    default_message = "User not found"


class GroupNotFound(NotFound):
    default_message = "Group not found"


class PostNotFound(NotFound):
    default_message = "Post not found"


class CommentNotFound(NotFound):
    default_message = "Comment not found"


class MessageNotFound(NotFound):
    default_message = "Message not found"


class InvitationNotFound(NotFound):
    default_message = "Invitation not found"


class RequestNotFound(NotFound):
    default_message = "Request not found"


class MemberNotFound(NotFound):
    default_message = "Member not found"


class FriendRequestNotFound(NotFound):
    default_message = "Friend request not found"


# Not authorized


class AccessDenied(NotAuthorized):
    default_message = "You don't have access to this private group's content"


# Conflicts


class AlreadyMember(Conflict):
    default_message = "Already a member"


class AlreadyPending(Conflict):
    default_message = "Request already pending"


class TargetAlreadyMember(Conflict):
    default_message = "User is already a member"


class AlreadyInvited(Conflict):
    default_message = "User has already been invited"


class AlreadyFriends(Conflict):
    default_message = "Already friends"


class FriendRequestAlreadySent(Conflict):
    default_message = "Friend request already sent"


class AlreadyLiked(Conflict):
    default_message = "Post already liked"


class EmailInUse(Conflict):
    default_message = "Email already in use"


class UsernameTaken(Conflict):
    default_message = "Username already taken"


class ConcurrentModification(Conflict):
    default_message = "The resource was modified by another request, please retry"


# Invalid input


class NotAMember(InvalidInput):
    default_message = "Not a member of this group"


class AdminCannotLeave(InvalidInput):
    default_message = (
        "Admin cannot leave the group. Transfer ownership first or delete the group."
    )


class CannotRemoveAdmin(InvalidInput):
    default_message = "Cannot remove group admin"


class NotLiked(InvalidInput):
    default_message = "Post has not yet been liked"


class NotFriends(InvalidInput):
    default_message = "Not friends"
