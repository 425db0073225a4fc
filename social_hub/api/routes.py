from flask_restful import Resource, reqparse
from flask import request
from flask_jwt_extended import jwt_required

from ..core.utils import get_current_user
from ..services import message_service, post_service, stats_service, user_service


def _user_search_dict(user):
    data = user.to_summary_dict()
    data["bio"] = user.bio
    return data


class RegisterResource(Resource):
    def post(self):
        parser = reqparse.RequestParser()
        parser.add_argument("username", type=str, location="json", required=True, help="Username is required")
        parser.add_argument("email", type=str, location="json", required=True, help="Email is required")
        parser.add_argument("password", type=str, location="json", required=True, help="Password is required")
        data = parser.parse_args()

        user, token = user_service.register_user(
            data["username"], data["email"], data["password"]
        )
        return {"token": token, "user": user.to_dict()}, 201


class LoginResource(Resource):
    def post(self):
        parser = reqparse.RequestParser()
        parser.add_argument("email", type=str, location="json", required=True, help="Email is required")
        parser.add_argument("password", type=str, location="json", required=True, help="Password is required")
        data = parser.parse_args()

        user, token = user_service.authenticate(data["email"], data["password"])
        return {"token": token, "user": user.to_dict()}, 200


class CurrentUserResource(Resource):
    @jwt_required()
    def get(self):
        return {"user": get_current_user().to_dict()}, 200


class UserSearchResource(Resource):
    @jwt_required()
    def get(self):
        parser = reqparse.RequestParser()
        parser.add_argument("username", type=str, location="args")
        data = parser.parse_args()

        users = user_service.search_users(data["username"])
        return {"users": [_user_search_dict(u) for u in users]}, 200


class UserResource(Resource):
    @jwt_required()
    def get(self, user_id):
        return {"user": user_service.get_user(user_id).to_dict()}, 200

    @jwt_required()
    def put(self, user_id):
        actor = get_current_user()
        parser = reqparse.RequestParser()
        parser.add_argument("bio", type=str, location="json")
        parser.add_argument("profile_picture", type=str, location="json")
        data = parser.parse_args()

        user = user_service.update_profile(
            user_id, actor, bio=data["bio"], profile_picture=data["profile_picture"]
        )
        return {"message": "Profile updated", "user": user.to_dict()}, 200

    @jwt_required()
    def delete(self, user_id):
        actor = get_current_user()
        user_service.delete_user(user_id, actor)
        return {"message": "User deleted"}, 200


class ProfilePictureResource(Resource):
    @jwt_required()
    def post(self):
        user = get_current_user()
        user = user_service.upload_profile_picture(user, request.files.get("profile_picture"))
        return {
            "message": "Profile picture uploaded successfully",
            "profile_picture": user.profile_picture,
            "user": user.to_dict(),
        }, 200

    @jwt_required()
    def delete(self):
        user = user_service.delete_profile_picture(get_current_user())
        return {
            "message": "Profile picture deleted successfully",
            "user": user.to_dict(),
        }, 200


class FriendResource(Resource):
    @jwt_required()
    def post(self, user_id):
        user = user_service.add_friend(get_current_user(), user_id)
        return {"message": "Friend added", "friends": sorted(user.get_friend_ids())}, 200

    @jwt_required()
    def delete(self, user_id):
        user = user_service.remove_friend(get_current_user(), user_id)
        return {"message": "Friend removed", "friends": sorted(user.get_friend_ids())}, 200


class FriendRequestListResource(Resource):
    @jwt_required()
    def get(self):
        requests = user_service.list_friend_requests(get_current_user())
        return {"friend_requests": [fr.to_request_dict() for fr in requests]}, 200


class FriendRequestResource(Resource):
    @jwt_required()
    def post(self, user_id):
        return user_service.send_friend_request(get_current_user(), user_id), 200


class FriendRequestAcceptResource(Resource):
    @jwt_required()
    def post(self, user_id):
        return user_service.accept_friend_request(get_current_user(), user_id), 200


class FriendRequestRejectResource(Resource):
    @jwt_required()
    def post(self, user_id):
        return user_service.reject_friend_request(get_current_user(), user_id), 200


# Posts


def _post_parser():
    parser = reqparse.RequestParser()
    parser.add_argument("text", type=str, location="json")
    parser.add_argument("media_type", type=str, location="json")
    parser.add_argument("media_url", type=str, location="json")
    return parser


class PostListResource(Resource):
    @jwt_required()
    def get(self):
        posts = post_service.get_feed(get_current_user())
        return {"posts": [post.to_dict() for post in posts]}, 200

    @jwt_required()
    def post(self):
        user = get_current_user()
        parser = _post_parser()
        parser.add_argument("group", type=int, location="json")
        data = parser.parse_args()

        post = post_service.create_post(
            user,
            data["text"],
            group_id=data["group"],
            media_type=data["media_type"],
            media_url=data["media_url"],
        )
        return {"message": "Post created successfully", "post": post.to_dict()}, 201


class PostSearchResource(Resource):
    @jwt_required()
    def get(self):
        parser = reqparse.RequestParser()
        parser.add_argument("text", type=str, location="args")
        data = parser.parse_args()

        posts = post_service.search_posts(get_current_user(), data["text"])
        return {"posts": [post.to_dict() for post in posts]}, 200


class PostMediaUploadResource(Resource):
    @jwt_required()
    def post(self):
        get_current_user()
        return post_service.save_post_media(request.files.get("media")), 201


class PostResource(Resource):
    @jwt_required()
    def get(self, post_id):
        post = post_service.get_post(post_id, get_current_user())
        return {"post": post.to_dict()}, 200

    @jwt_required()
    def put(self, post_id):
        user = get_current_user()
        data = _post_parser().parse_args()
        post = post_service.update_post(
            post_id,
            user,
            text=data["text"],
            media_type=data["media_type"],
            media_url=data["media_url"],
        )
        return {"message": "Post updated", "post": post.to_dict()}, 200

    @jwt_required()
    def delete(self, post_id):
        return post_service.delete_post(post_id, get_current_user()), 200


class PostLikeResource(Resource):
    @jwt_required()
    def put(self, post_id):
        post = post_service.like_post(post_id, get_current_user())
        return {"likes": [like.user_id for like in post.likes]}, 200


class PostUnlikeResource(Resource):
    @jwt_required()
    def put(self, post_id):
        post = post_service.unlike_post(post_id, get_current_user())
        return {"likes": [like.user_id for like in post.likes]}, 200


def _comment_parser():
    parser = reqparse.RequestParser()
    parser.add_argument("text", type=str, location="json")
    return parser


class CommentListResource(Resource):
    @jwt_required()
    def post(self, post_id):
        user = get_current_user()
        data = _comment_parser().parse_args()
        post = post_service.add_comment(post_id, user, data["text"])
        return {"comments": [comment.to_dict() for comment in post.comments]}, 201


class CommentResource(Resource):
    @jwt_required()
    def put(self, post_id, comment_id):
        user = get_current_user()
        data = _comment_parser().parse_args()
        post = post_service.edit_comment(post_id, comment_id, user, data["text"])
        return {"comments": [comment.to_dict() for comment in post.comments]}, 200

    @jwt_required()
    def delete(self, post_id, comment_id):
        post = post_service.delete_comment(post_id, comment_id, get_current_user())
        return {"comments": [comment.to_dict() for comment in post.comments]}, 200


class UserPostsResource(Resource):
    @jwt_required()
    def get(self, user_id):
        posts = post_service.get_user_posts(user_id, get_current_user())
        return {"posts": [post.to_dict() for post in posts]}, 200


class GroupPostsResource(Resource):
    @jwt_required()
    def get(self, group_id):
        posts = post_service.get_group_posts(group_id, get_current_user())
        return {"posts": [post.to_dict() for post in posts]}, 200


# Messages


class MessageListResource(Resource):
    @jwt_required()
    def get(self):
        conversations = message_service.list_conversations(get_current_user())
        return {"conversations": conversations}, 200

    @jwt_required()
    def post(self):
        user = get_current_user()
        parser = reqparse.RequestParser()
        parser.add_argument("receiver", type=int, location="json", required=True, help="Receiver is required")
        parser.add_argument("content", type=str, location="json")
        data = parser.parse_args()

        message = message_service.send_message(user, data["receiver"], data["content"])
        return {"message": message.to_dict()}, 201


class UnreadMessageCountResource(Resource):
    @jwt_required()
    def get(self):
        return {"unread_count": message_service.unread_count(get_current_user())}, 200


class ConversationResource(Resource):
    @jwt_required()
    def get(self, user_id):
        messages = message_service.get_conversation(get_current_user(), user_id)
        return {"messages": messages}, 200


class MarkConversationReadResource(Resource):
    @jwt_required()
    def put(self, user_id):
        marked = message_service.mark_read(get_current_user(), user_id)
        return {"message": "Messages marked as read", "marked": marked}, 200


class MessageResource(Resource):
    @jwt_required()
    def delete(self, message_id):
        return message_service.delete_message(message_id, get_current_user()), 200


# Stats


class PostsPerMonthStatsResource(Resource):
    @jwt_required()
    def get(self):
        return {"stats": stats_service.get_stat("posts_per_month")}, 200


class GroupsByMembersStatsResource(Resource):
    @jwt_required()
    def get(self):
        return {"stats": stats_service.get_stat("groups_by_members")}, 200


class ActiveUsersStatsResource(Resource):
    @jwt_required()
    def get(self):
        return {"stats": stats_service.get_stat("most_active_users")}, 200


class PostEngagementStatsResource(Resource):
    @jwt_required()
    def get(self):
        return {"stats": stats_service.get_stat("post_engagement")}, 200
