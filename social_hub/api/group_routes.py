from flask_restful import Resource, reqparse, inputs
from flask_jwt_extended import jwt_required

from ..core.utils import get_current_user
from ..services import group_service


class GroupListResource(Resource):
    @jwt_required()
    def get(self):
        groups = group_service.list_visible_groups(get_current_user())
        return {"groups": [group.to_summary_dict() for group in groups]}, 200

    @jwt_required()
    def post(self):
        user = get_current_user()
        parser = reqparse.RequestParser()
        parser.add_argument("name", type=str, location="json")
        parser.add_argument("description", type=str, location="json")
        parser.add_argument("is_private", type=inputs.boolean, location="json", default=False)
        data = parser.parse_args()

        group = group_service.create_group(
            user, data["name"], data["description"], data["is_private"]
        )
        return {"message": "Group created successfully", "group": group.to_dict()}, 201


class MyGroupsResource(Resource):
    @jwt_required()
    def get(self):
        groups = group_service.list_user_groups(get_current_user())
        return {"groups": [group.to_summary_dict() for group in groups]}, 200


class GroupSearchResource(Resource):
    @jwt_required()
    def get(self):
        parser = reqparse.RequestParser()
        parser.add_argument("name", type=str, location="args")
        data = parser.parse_args()

        groups = group_service.search_groups(get_current_user(), data["name"])
        return {"groups": [group.to_summary_dict() for group in groups]}, 200


class GroupInvitationListResource(Resource):
    @jwt_required()
    def get(self):
        return {"invitations": group_service.list_invitations(get_current_user())}, 200


class GroupResource(Resource):
    @jwt_required()
    def get(self, group_id):
        return {"group": group_service.get_group_view(group_id, get_current_user())}, 200

    @jwt_required()
    def put(self, group_id):
        user = get_current_user()
        parser = reqparse.RequestParser()
        parser.add_argument("name", type=str, location="json")
        parser.add_argument("description", type=str, location="json")
        parser.add_argument("is_private", type=inputs.boolean, location="json")
        data = parser.parse_args()

        group = group_service.update_group(
            group_id,
            user,
            name=data["name"],
            description=data["description"],
            is_private=data["is_private"],
        )
        return {"message": "Group updated", "group": group.to_dict()}, 200

    @jwt_required()
    def delete(self, group_id):
        group_service.delete_group(group_id, get_current_user())
        return {"message": "Group removed"}, 200


class GroupJoinResource(Resource):
    @jwt_required()
    def post(self, group_id):
        return group_service.request_to_join(group_id, get_current_user()), 200


class GroupInviteResource(Resource):
    @jwt_required()
    def post(self, group_id, user_id):
        return group_service.invite(group_id, get_current_user(), user_id), 200


class GroupInvitationResponseResource(Resource):
    @jwt_required()
    def put(self, group_id):
        user = get_current_user()
        parser = reqparse.RequestParser()
        parser.add_argument(
            "accept",
            type=inputs.boolean,
            location="json",
            required=True,
            help="accept must be true or false",
        )
        data = parser.parse_args()

        return group_service.respond_to_invitation(group_id, user, data["accept"]), 200


class GroupApproveResource(Resource):
    @jwt_required()
    def post(self, group_id, user_id):
        return group_service.approve_request(group_id, get_current_user(), user_id), 200


class GroupRejectResource(Resource):
    @jwt_required()
    def post(self, group_id, user_id):
        return group_service.reject_request(group_id, get_current_user(), user_id), 200


class GroupMemberResource(Resource):
    @jwt_required()
    def delete(self, group_id, user_id):
        return group_service.remove_member(group_id, get_current_user(), user_id), 200


class GroupLeaveResource(Resource):
    @jwt_required()
    def delete(self, group_id):
        return group_service.leave_group(group_id, get_current_user()), 200
