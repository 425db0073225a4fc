import unittest
from datetime import datetime, timedelta, timezone

from social_hub.services import stats_service
from tests.test_base import AppTestCase


class TestStatsAPI(AppTestCase):

    def _get(self, path, user_id=None):
        response = self.client.get(path, headers=self._auth_headers(user_id or self.user1_id))
        self.assertEqual(response.status_code, 200)
        return response.get_json()["stats"]

    def test_stats_require_token(self):
        with self.app.app_context():
            response = self.client.get("/api/stats/posts/monthly")
            self.assertEqual(response.status_code, 401)

    def test_posts_per_month(self):
        with self.app.app_context():
            self._create_db_post(self.user1_id, created_at=datetime(2024, 11, 3, tzinfo=timezone.utc))
            self._create_db_post(self.user1_id, created_at=datetime(2025, 1, 15, tzinfo=timezone.utc))
            self._create_db_post(self.user2_id, created_at=datetime(2025, 1, 20, tzinfo=timezone.utc))

            stats = self._get("/api/stats/posts/monthly")
            self.assertEqual(
                stats,
                [{"month": "11/2024", "count": 1}, {"month": "1/2025", "count": 2}],
            )

    def test_groups_by_members(self):
        with self.app.app_context():
            small = self._create_db_group(self.user1_id, name="Small")
            big = self._create_db_group(self.user2_id, name="Big", is_private=True)
            self._add_member(big.id, self.user1_id)
            self._add_member(big.id, self.user3_id)

            stats = self._get("/api/stats/groups/members")
            self.assertEqual([g["id"] for g in stats], [big.id, small.id])
            self.assertEqual(stats[0]["member_count"], 3)
            self.assertEqual(stats[0]["admin"], "testuser2")
            self.assertTrue(stats[0]["is_private"])
            self.assertEqual(stats[1]["member_count"], 1)

    def test_most_active_users(self):
        with self.app.app_context():
            for _ in range(3):
                self._create_db_post(self.user2_id)
            self._create_db_post(self.user1_id)

            stats = self._get("/api/stats/users/active")
            self.assertEqual(
                [(s["user"]["id"], s["post_count"]) for s in stats],
                [(self.user2_id, 3), (self.user1_id, 1)],
            )

    def test_post_engagement(self):
        with self.app.app_context():
            quiet = self._create_db_post(self.user1_id, "quiet")
            busy = self._create_db_post(self.user2_id, "b" * 80)
            self._create_db_like(self.user1_id, busy.id)
            self._create_db_like(self.user3_id, busy.id)
            self._create_db_comment(self.user1_id, busy.id)

            stats = self._get("/api/stats/posts/engagement")
            self.assertEqual([s["id"] for s in stats], [busy.id, quiet.id])
            self.assertEqual(stats[0]["likes"], 2)
            self.assertEqual(stats[0]["comments"], 1)
            self.assertEqual(stats[0]["total_engagement"], 3)
            self.assertEqual(stats[0]["text"], "b" * 50 + "...")
            self.assertEqual(stats[1]["total_engagement"], 0)

    def test_fresh_snapshot_is_served(self):
        with self.app.app_context():
            self._create_db_post(self.user1_id)
            stats_service.refresh_stats_snapshot()
            self._create_db_post(self.user1_id)

            stats = self._get("/api/stats/users/active")
            self.assertEqual(stats[0]["post_count"], 1)

    def test_stale_snapshot_falls_back_to_live(self):
        with self.app.app_context():
            self._create_db_post(self.user1_id)
            snapshot = stats_service.refresh_stats_snapshot()
            snapshot["computed_at"] = datetime.now(timezone.utc) - timedelta(
                seconds=self.app.config["STATS_SNAPSHOT_MAX_AGE_SECONDS"] + 60
            )
            self._create_db_post(self.user1_id)

            stats = self._get("/api/stats/users/active")
            self.assertEqual(stats[0]["post_count"], 2)

    def test_unknown_stat(self):
        with self.app.app_context():
            with self.assertRaises(KeyError):
                stats_service.get_stat("nope")


if __name__ == "__main__":
    unittest.main()
