import io
import os
import sys
import unittest
import logging

from flask_jwt_extended import create_access_token

from social_hub import create_app, db as app_db
from social_hub.models.db_models import (
    Comment,
    Friendship,
    Group,
    Like,
    Message,
    Post,
    User,
)
from social_hub.services import group_service


class AppTestCase(unittest.TestCase):
    app = None
    db = None

    @classmethod
    def setUpClass(cls):
        cls.app = create_app("testing")
        cls.db = app_db

        cls.app.logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        for h_ in list(cls.app.logger.handlers):
            cls.app.logger.removeHandler(h_)
        cls.app.logger.addHandler(handler)
        cls.app.logger.propagate = False

        with cls.app.app_context():
            cls.db.create_all()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            cls.db.drop_all()

    def setUp(self):
        """
        Set up the test environment before each test case.
        Cleans all database tables and creates three base users.
        """
        self.client = self.app.test_client()

        with self.app.app_context():
            self._clean_tables_for_setup()
            self._setup_base_users()

    def _clean_tables_for_setup(self):
        self.db.session.remove()
        for table in reversed(self.db.metadata.sorted_tables):
            self.db.session.execute(table.delete())
        self.db.session.commit()
        self.app.stats_snapshot = None

    def tearDown(self):
        """
        Rolls back any pending database transactions, removes the session and
        deletes any files written to the upload folder during the test.
        """
        with self.app.app_context():
            self.db.session.rollback()
            self.db.session.remove()

        for folder_key in ("PROFILE_PICS_FOLDER", "POST_MEDIA_FOLDER"):
            folder = self.app.config.get(folder_key)
            if folder and os.path.exists(folder):
                for filename in os.listdir(folder):
                    file_path = os.path.join(folder, filename)
                    if os.path.isfile(file_path) or os.path.islink(file_path):
                        os.unlink(file_path)

    def _setup_base_users(self):
        self.user1 = self._create_db_user("testuser1", "test1@example.com")
        self.user2 = self._create_db_user("testuser2", "test2@example.com")
        self.user3 = self._create_db_user("testuser3", "test3@example.com")
        self.user1_id = self.user1.id
        self.user2_id = self.user2.id
        self.user3_id = self.user3.id

    def _create_db_user(self, username, email=None, password="password", is_admin=False):
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            is_admin=is_admin,
        )
        user.set_password(password)
        self.db.session.add(user)
        self.db.session.commit()
        self.db.session.refresh(user)
        return user

    def _user(self, user_id):
        return self.db.session.get(User, user_id)

    def _auth_headers(self, user_id):
        token = create_access_token(identity=str(user_id))
        return {"Authorization": f"Bearer {token}"}

    def _create_db_group(self, admin_id, name="Test Group", description="A group for tests", is_private=False):
        group = group_service.create_group(
            self._user(admin_id), name, description, is_private
        )
        return self.db.session.get(Group, group.id)

    def _add_member(self, group_id, user_id):
        group = self.db.session.get(Group, group_id)
        group_service.request_to_join(group_id, self._user(user_id))
        group_service.approve_request(group_id, self._user(group.admin_id), user_id)

    def _make_friends(self, user_id, friend_id):
        self.db.session.add(
            Friendship(user_id=user_id, friend_id=friend_id, status=Friendship.ACCEPTED)
        )
        self.db.session.commit()

    def _create_db_post(self, user_id, text="Test post text", group_id=None, created_at=None):
        post = Post(user_id=user_id, text=text, group_id=group_id)
        if created_at:
            post.created_at = created_at
        self.db.session.add(post)
        self.db.session.commit()
        return self.db.session.get(Post, post.id)

    def _create_db_like(self, user_id, post_id):
        like = Like(user_id=user_id, post_id=post_id)
        self.db.session.add(like)
        self.db.session.commit()
        return like

    def _create_db_comment(self, user_id, post_id, text="Test comment"):
        comment = Comment(user_id=user_id, post_id=post_id, text=text)
        self.db.session.add(comment)
        self.db.session.commit()
        return comment

    def _create_db_message(self, sender_id, receiver_id, content="Hello", is_read=False):
        from social_hub.services.message_service import room_id

        msg = Message(
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            room=room_id(sender_id, receiver_id),
            is_read=is_read,
        )
        self.db.session.add(msg)
        self.db.session.commit()
        return msg

    def create_dummy_file(self, filename="test.png", content=b"dummy file content"):
        return (io.BytesIO(content), filename)
