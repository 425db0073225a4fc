import os
import sys
from dotenv import load_dotenv

load_dotenv()

project_root = os.path.abspath(os.path.dirname(__file__))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import alembic.command
import alembic.config
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from social_hub import create_app, db, scheduler, migrate, socketio
from social_hub.models.db_models import Friendship, Group, GroupMembership, Post, User
from social_hub.services import group_service
from social_hub.services.stats_service import refresh_stats_snapshot

app = create_app(os.getenv("FLASK_CONFIG") or "default")

DEMO_PASSWORD = "password123"
DEMO_USERS = [
    {"username": "admin", "email": "admin@example.com", "bio": "Site administrator", "is_admin": True},
    {"username": "john", "email": "john@example.com", "bio": "Photographer and hiker"},
    {"username": "sarah", "email": "sarah@example.com", "bio": "Loves books and coffee"},
    {"username": "mike", "email": "mike@example.com", "bio": "Weekend cyclist"},
    {"username": "emma", "email": "emma@example.com", "bio": "Frontend developer"},
]


@app.cli.command("seed-demo")
def seed_demo_cli():
    """CLI command to seed demo users, friendships, groups and posts."""
    with app.app_context():
        if User.query.filter_by(email=DEMO_USERS[0]["email"]).first():
            print("Demo data already present, skipping.")
            return

        users = {}
        for user_data in DEMO_USERS:
            user = User(
                username=user_data["username"],
                email=user_data["email"],
                bio=user_data["bio"],
                is_admin=user_data.get("is_admin", False),
            )
            user.set_password(DEMO_PASSWORD)
            db.session.add(user)
            users[user.username] = user
            print(f"Adding user: {user.username}")
        db.session.commit()

        for a, b in [("john", "sarah"), ("john", "mike"), ("sarah", "emma")]:
            db.session.add(
                Friendship(
                    user_id=users[a].id,
                    friend_id=users[b].id,
                    status=Friendship.ACCEPTED,
                )
            )
        db.session.add(
            Friendship(
                user_id=users["mike"].id,
                friend_id=users["emma"].id,
                status=Friendship.PENDING,
            )
        )
        db.session.commit()

        hikers = group_service.create_group(
            users["john"], "Trail Hikers", "Weekend hikes and trail reports", False
        )
        readers = group_service.create_group(
            users["sarah"], "Book Club", "Monthly reads, private discussion", True
        )
        group_service.request_to_join(hikers.id, users["mike"])
        group_service.approve_request(hikers.id, users["john"], users["mike"].id)
        group_service.invite(readers.id, users["sarah"], users["emma"].id)

        db.session.add_all(
            [
                Post(user_id=users["john"].id, text="Hello everyone, welcome to the network!"),
                Post(user_id=users["sarah"].id, text="Just finished a great novel."),
                Post(
                    user_id=users["mike"].id,
                    group_id=hikers.id,
                    text="Anyone up for the ridge trail on Saturday?",
                ),
                Post(
                    user_id=users["sarah"].id,
                    group_id=readers.id,
                    text="Next month's pick is up for a vote.",
                ),
            ]
        )
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            print(f"Error committing demo posts: {e}")
            return

        print(
            f"Seeded {User.query.count()} users, {Group.query.count()} groups, "
            f"{GroupMembership.query.count()} memberships and {Post.query.count()} posts."
        )
        print(f"All demo users share the password '{DEMO_PASSWORD}'.")


def apply_migrations(app_instance):
    """Applies Alembic migrations at startup."""
    with app_instance.app_context():
        try:
            app_instance.logger.info("Configuring Alembic for database migrations...")
            alembic_cfg = alembic.config.Config(
                os.path.join(project_root, "migrations", "alembic.ini")
            )
            alembic_cfg.set_main_option(
                "script_location", os.path.join(project_root, migrate.directory)
            )
            alembic_cfg.set_main_option(
                "sqlalchemy.url", app_instance.config["SQLALCHEMY_DATABASE_URI"]
            )

            app_instance.logger.info("Attempting to apply database migrations...")
            alembic.command.upgrade(alembic_cfg, "head")
            app_instance.logger.info(
                "Database migrations applied successfully (or already up to date)."
            )
        except Exception as e:
            app_instance.logger.error(f"Error applying database migrations: {e}")


def check_membership_table_exists(app_instance):
    """Checks for the existence of the 'group_membership' table after migrations."""
    with app_instance.app_context():
        with db.engine.connect() as connection:
            try:
                connection.execute(text("SELECT 1 FROM group_membership LIMIT 1"))
                app_instance.logger.info(
                    "Table 'group_membership' confirmed to exist in the database."
                )
            except OperationalError as e:
                app_instance.logger.critical(
                    f"CRITICAL: Table 'group_membership' does not exist after migrations. Error: {e}"
                )
                raise RuntimeError(
                    "Application cannot start: 'group_membership' table is missing after migrations."
                )


def start_scheduler(app_instance):
    if scheduler.running:
        app_instance.logger.info("Scheduler already running.")
        return

    def run_refresh_stats_snapshot():
        with app_instance.app_context():
            refresh_stats_snapshot()

    scheduler.add_job(
        func=run_refresh_stats_snapshot,
        trigger="interval",
        minutes=app_instance.config["STATS_REFRESH_MINUTES"],
        id="refresh_stats_snapshot_job",
        replace_existing=True,
    )

    try:
        scheduler.start()
        app_instance.logger.info("Scheduler started with jobs.")
    except Exception as e:
        app_instance.logger.error(f"Error starting scheduler: {e}")
        return

    run_refresh_stats_snapshot()

    import atexit

    atexit.register(lambda: scheduler.shutdown() if scheduler.running else None)
    app_instance.logger.info("Scheduler shutdown registered via atexit.")


if __name__ == "__main__":
    if not app.config.get("TESTING", False):
        if not app.debug or os.environ.get("WERKZEUG_RUN_MAIN") == "true":
            apply_migrations(app)
            check_membership_table_exists(app)
            start_scheduler(app)
        else:
            app.logger.info(
                "Scheduler not started (Werkzeug reloader process or debug mode without WERKZEUG_RUN_MAIN)."
            )
    else:
        app.logger.info("Scheduler not started (app is in TESTING mode).")

    app_port = int(os.environ.get("PORT", 5000))
    socketio.run(
        app,
        host="0.0.0.0",
        port=app_port,
        debug=app.debug,
        allow_unsafe_werkzeug=True,
    )
