import os
import unittest
from unittest.mock import patch

from flask_jwt_extended import decode_token
from sqlalchemy.exc import OperationalError

from social_hub.models.db_models import (
    Friendship,
    Group,
    GroupMembership,
    Like,
    Message,
    Post,
    User,
)
from social_hub.services import notifications_service, user_service
from social_hub.services.errors import ServerError
from tests.test_base import AppTestCase


class TestAuthAPI(AppTestCase):

    def test_register_success(self):
        with self.app.app_context():
            response = self.client.post(
                "/api/users",
                json={"username": "newuser", "email": "New@Example.com", "password": "secret1"},
            )
            self.assertEqual(response.status_code, 201)
            data = response.get_json()
            self.assertEqual(data["user"]["username"], "newuser")
            self.assertEqual(data["user"]["email"], "new@example.com")
            self.assertEqual(data["user"]["friends"], [])
            self.assertEqual(data["user"]["groups"], [])
            self.assertNotIn("password_hash", data["user"])

            user = User.query.filter_by(username="newuser").first()
            self.assertIsNotNone(user)
            self.assertTrue(user.check_password("secret1"))
            self.assertEqual(decode_token(data["token"])["sub"], str(user.id))

    def test_register_validation(self):
        with self.app.app_context():
            cases = [
                ({"username": "ab", "email": "ab@example.com", "password": "secret1"},
                 "Username must be at least 3 characters long"),
                ({"username": "abc", "email": "not-an-email", "password": "secret1"},
                 "Please include a valid email"),
                ({"username": "abc", "email": "abc@example.com", "password": "123"},
                 "Please enter a password with 6 or more characters"),
            ]
            for payload, message in cases:
                response = self.client.post("/api/users", json=payload)
                self.assertEqual(response.status_code, 400, payload)
                self.assertEqual(response.get_json()["message"], message)
                self.assertEqual(response.get_json()["error"], "InvalidInput")

            response = self.client.post("/api/users", json={"username": "abc"})
            self.assertEqual(response.status_code, 400)
            self.assertEqual(User.query.count(), 3)

    def test_register_duplicates(self):
        with self.app.app_context():
            response = self.client.post(
                "/api/users",
                json={"username": "someone", "email": "test1@example.com", "password": "secret1"},
            )
            self.assertEqual(response.status_code, 409)
            self.assertEqual(
                response.get_json(), {"message": "Email already in use", "error": "EmailInUse"}
            )

            response = self.client.post(
                "/api/users",
                json={"username": "testuser1", "email": "other@example.com", "password": "secret1"},
            )
            self.assertEqual(response.status_code, 409)
            self.assertEqual(response.get_json()["error"], "UsernameTaken")

    def test_login(self):
        with self.app.app_context():
            response = self.client.post(
                "/api/users/login", json={"email": "test1@example.com", "password": "password"}
            )
            self.assertEqual(response.status_code, 200)
            data = response.get_json()
            self.assertEqual(data["user"]["id"], self.user1_id)
            self.assertEqual(decode_token(data["token"])["sub"], str(self.user1_id))

            response = self.client.post(
                "/api/users/login", json={"email": "test1@example.com", "password": "wrong"}
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["message"], "Invalid credentials")

            response = self.client.post(
                "/api/users/login", json={"email": "nobody@example.com", "password": "password"}
            )
            self.assertEqual(response.status_code, 400)

    def test_me(self):
        with self.app.app_context():
            response = self.client.get("/api/users/me", headers=self._auth_headers(self.user1_id))
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["user"]["username"], "testuser1")

            response = self.client.get("/api/users/me")
            self.assertEqual(response.status_code, 401)

    def test_token_for_deleted_user(self):
        with self.app.app_context():
            response = self.client.get("/api/users/me", headers=self._auth_headers(999))
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.get_json()["error"], "UserNotFound")


class TestUserProfileAPI(AppTestCase):

    def test_get_user(self):
        with self.app.app_context():
            self._make_friends(self.user1_id, self.user2_id)
            response = self.client.get(
                f"/api/users/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["user"]["friends"], [self.user1_id])

            response = self.client.get("/api/users/999", headers=self._auth_headers(self.user1_id))
            self.assertEqual(response.status_code, 404)

    def test_search_users(self):
        with self.app.app_context():
            self._create_db_user("alice")
            response = self.client.get(
                "/api/users/search?username=TESTUSER", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 200)
            users = response.get_json()["users"]
            self.assertEqual([u["username"] for u in users], ["testuser1", "testuser2", "testuser3"])
            self.assertIn("bio", users[0])
            self.assertNotIn("email", users[0])

            response = self.client.get("/api/users/search", headers=self._auth_headers(self.user1_id))
            self.assertEqual(response.status_code, 400)

    def test_search_users_treats_wildcards_literally(self):
        with self.app.app_context():
            self._create_db_user("under_score")
            self._create_db_user("underXscore")

            response = self.client.get(
                "/api/users/search?username=_", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual([u["username"] for u in response.get_json()["users"]], ["under_score"])

            response = self.client.get(
                "/api/users/search?username=%25", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.get_json()["users"], [])

    def test_update_profile(self):
        with self.app.app_context():
            response = self.client.put(
                f"/api/users/{self.user1_id}",
                json={"bio": "Hello there"},
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["user"]["bio"], "Hello there")

            response = self.client.put(
                f"/api/users/{self.user1_id}",
                json={"bio": "Defaced"},
                headers=self._auth_headers(self.user2_id),
            )
            self.assertEqual(response.status_code, 403)
            self.assertEqual(response.get_json()["error"], "NotAuthorized")
            self.assertEqual(self._user(self.user1_id).bio, "Hello there")

    def test_profile_picture_upload_and_delete(self):
        with self.app.app_context():
            response = self.client.post(
                "/api/users/profile-picture",
                data={"profile_picture": self.create_dummy_file("me.png")},
                content_type="multipart/form-data",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 200)
            url = response.get_json()["profile_picture"]
            self.assertTrue(url.startswith("/uploads/profile_pics/"))
            self.assertTrue(url.endswith("_me.png"))

            stored = os.path.join(self.app.config["UPLOAD_FOLDER"], url[len("/uploads/"):])
            self.assertTrue(os.path.isfile(stored))

            served = self.client.get(url)
            self.assertEqual(served.status_code, 200)
            self.assertEqual(served.data, b"dummy file content")
            served.close()

            response = self.client.delete(
                "/api/users/profile-picture", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["user"]["profile_picture"], "")
            self.assertFalse(os.path.isfile(stored))

            response = self.client.delete(
                "/api/users/profile-picture", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 400)

    def test_profile_picture_rejects_bad_uploads(self):
        with self.app.app_context():
            response = self.client.post(
                "/api/users/profile-picture",
                data={},
                content_type="multipart/form-data",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["message"], "No file uploaded")

            response = self.client.post(
                "/api/users/profile-picture",
                data={"profile_picture": self.create_dummy_file("notes.txt")},
                content_type="multipart/form-data",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["message"], "Only image files are allowed")

            self.app.config["PROFILE_PICTURE_MAX_SIZE"] = 4
            try:
                response = self.client.post(
                    "/api/users/profile-picture",
                    data={"profile_picture": self.create_dummy_file("big.png")},
                    content_type="multipart/form-data",
                    headers=self._auth_headers(self.user1_id),
                )
            finally:
                self.app.config["PROFILE_PICTURE_MAX_SIZE"] = 5 * 1024 * 1024
            self.assertEqual(response.status_code, 400)
            self.assertTrue(response.get_json()["message"].startswith("File too large"))
            self.assertEqual(self._user(self.user1_id).profile_picture, "")

    def test_delete_user_cascades(self):
        with self.app.app_context():
            group = self._create_db_group(self.user2_id)
            self._add_member(group.id, self.user1_id)
            other_group = self._create_db_group(self.user1_id, name="Other")
            self._add_member(other_group.id, self.user2_id)
            self._make_friends(self.user1_id, self.user2_id)
            own_post = self._create_db_post(self.user2_id)
            post = self._create_db_post(self.user1_id)
            self._create_db_like(self.user2_id, post.id)
            self._create_db_comment(self.user2_id, post.id)
            self._create_db_comment(self.user1_id, own_post.id)
            self._create_db_message(self.user2_id, self.user1_id)
            group_id, post_id = group.id, post.id

            response = self.client.delete(
                f"/api/users/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 403)

            response = self.client.delete(
                f"/api/users/{self.user2_id}", headers=self._auth_headers(self.user2_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["message"], "User deleted")

            self.db.session.expire_all()
            self.assertIsNone(self._user(self.user2_id))
            self.assertIsNone(self.db.session.get(Group, group_id))
            self.assertEqual(GroupMembership.query.filter_by(user_id=self.user2_id).count(), 0)
            self.assertEqual(Friendship.query.count(), 0)
            self.assertEqual(Message.query.count(), 0)
            self.assertEqual(Like.query.count(), 0)
            self.assertEqual(Post.query.filter_by(user_id=self.user2_id).count(), 0)
            self.assertEqual(self.db.session.get(Post, post_id).comments, [])
            self.assertEqual(self._user(self.user1_id).get_group_ids(), {other_group.id})

    def test_site_admin_can_delete_user(self):
        with self.app.app_context():
            admin = self._create_db_user("siteadmin", is_admin=True)
            response = self.client.delete(
                f"/api/users/{self.user3_id}", headers=self._auth_headers(admin.id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertIsNone(self._user(self.user3_id))

    def test_group_deletion_logged_only_after_user_delete_commits(self):
        with self.app.app_context():
            group = self._create_db_group(self.user2_id, name="Doomed")
            group_id = group.id
            deleted_line = f"User {self.user2_id} deleted group {group_id}"

            with self.assertLogs(self.app.logger, level="INFO") as logs:
                with patch.object(
                    self.db.session,
                    "commit",
                    side_effect=OperationalError("DELETE", {}, Exception("disk I/O error")),
                ):
                    with self.assertRaises(ServerError):
                        user_service.delete_user(self.user2_id, self._user(self.user2_id))
            self.assertFalse(any(deleted_line in line for line in logs.output))
            self.assertIsNotNone(self.db.session.get(Group, group_id))

            with self.assertLogs(self.app.logger, level="INFO") as logs:
                user_service.delete_user(self.user2_id, self._user(self.user2_id))
            self.assertTrue(any(deleted_line in line for line in logs.output))


class TestFriendsAPI(AppTestCase):

    def test_friend_request_accept_flow(self):
        with self.app.app_context():
            response = self.client.post(
                f"/api/users/friend-requests/{self.user2_id}",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["message"], "Friend request sent")

            response = self.client.post(
                f"/api/users/friend-requests/{self.user2_id}",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 409)
            self.assertEqual(response.get_json()["error"], "FriendRequestAlreadySent")

            response = self.client.post(
                f"/api/users/friend-requests/{self.user1_id}",
                headers=self._auth_headers(self.user2_id),
            )
            self.assertEqual(response.status_code, 409)
            self.assertEqual(
                response.get_json()["message"], "This user has already sent you a friend request"
            )

            response = self.client.get(
                "/api/users/friend-requests", headers=self._auth_headers(self.user2_id)
            )
            requests = response.get_json()["friend_requests"]
            self.assertEqual(len(requests), 1)
            self.assertEqual(requests[0]["user"]["id"], self.user1_id)

            response = self.client.post(
                f"/api/users/friend-requests/{self.user1_id}/accept",
                headers=self._auth_headers(self.user2_id),
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(self._user(self.user2_id).get_friend_ids(), {self.user1_id})

            response = self.client.post(
                f"/api/users/friend-requests/{self.user1_id}/accept",
                headers=self._auth_headers(self.user2_id),
            )
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.get_json()["error"], "FriendRequestNotFound")

            response = self.client.post(
                f"/api/users/friend-requests/{self.user2_id}",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 409)
            self.assertEqual(response.get_json()["error"], "AlreadyFriends")

    def test_friend_request_reject(self):
        with self.app.app_context():
            self.client.post(
                f"/api/users/friend-requests/{self.user2_id}",
                headers=self._auth_headers(self.user1_id),
            )
            response = self.client.post(
                f"/api/users/friend-requests/{self.user1_id}/reject",
                headers=self._auth_headers(self.user2_id),
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(Friendship.query.count(), 0)

    def test_friend_request_to_self_or_unknown(self):
        with self.app.app_context():
            response = self.client.post(
                f"/api/users/friend-requests/{self.user1_id}",
                headers=self._auth_headers(self.user1_id),
            )
            self.assertEqual(response.status_code, 400)

            response = self.client.post(
                "/api/users/friend-requests/999", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 404)

    def test_friend_request_notifies_connected_user(self):
        with self.app.app_context():
            self.app.connection_registry.register("sid-user2", self.user2_id)
            try:
                with patch.object(notifications_service.socketio, "emit") as mock_emit:
                    response = self.client.post(
                        f"/api/users/friend-requests/{self.user2_id}",
                        headers=self._auth_headers(self.user1_id),
                    )
            finally:
                self.app.connection_registry.unregister("sid-user2")

            self.assertEqual(response.status_code, 200)
            mock_emit.assert_called_once()
            event, payload = mock_emit.call_args[0]
            self.assertEqual(event, "friend_request")
            self.assertEqual(payload["from"]["id"], self.user1_id)
            self.assertEqual(mock_emit.call_args[1]["to"], "sid-user2")

    def test_add_and_remove_friend(self):
        with self.app.app_context():
            response = self.client.post(
                f"/api/users/friends/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["friends"], [self.user2_id])

            response = self.client.post(
                f"/api/users/friends/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 409)

            response = self.client.delete(
                f"/api/users/friends/{self.user1_id}", headers=self._auth_headers(self.user2_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.get_json()["friends"], [])
            self.assertEqual(self._user(self.user1_id).get_friend_ids(), set())

            response = self.client.delete(
                f"/api/users/friends/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["error"], "NotFriends")

    def test_remove_self_from_friends_is_not_friends(self):
        with self.app.app_context():
            self._make_friends(self.user1_id, self.user2_id)
            response = self.client.delete(
                f"/api/users/friends/{self.user1_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.get_json()["error"], "NotFriends")
            self.assertEqual(self._user(self.user1_id).get_friend_ids(), {self.user2_id})

    def test_add_friend_accepts_pending_request(self):
        with self.app.app_context():
            self.db.session.add(
                Friendship(user_id=self.user2_id, friend_id=self.user1_id, status=Friendship.PENDING)
            )
            self.db.session.commit()

            response = self.client.post(
                f"/api/users/friends/{self.user2_id}", headers=self._auth_headers(self.user1_id)
            )
            self.assertEqual(response.status_code, 200)
            self.assertEqual(Friendship.query.count(), 1)
            self.assertEqual(Friendship.query.first().status, Friendship.ACCEPTED)


if __name__ == "__main__":
    unittest.main()
