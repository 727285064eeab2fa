"""
Sync script: re-run the achievement evaluator for every user.

Useful after adding achievements to the catalog, or after importing
progress that bypassed the review/skip flow. Safe to run repeatedly:
already unlocked achievements are skipped, nothing is ever removed.

Usage:
    python scripts/sync_achievements.py            # all users
    python scripts/sync_achievements.py 12 15      # only these user ids
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from academy.db.base import SessionLocal
from academy.notifications.service import notify_achievements
from academy.progression.achievements import evaluate
from academy.users.models import User


def sync_achievements(user_ids=None, notify=False):
    """Evaluate achievements for each user and report what was unlocked."""
    db = SessionLocal()

    try:
        query = db.query(User.id, User.username).order_by(User.id)
        if user_ids:
            query = query.filter(User.id.in_(user_ids))
        users = query.all()
        print(f"Found {len(users)} users to process", flush=True)

        total = 0
        for user_id, username in users:
            unlocked = evaluate(db, user_id)
            total += len(unlocked)
            if unlocked:
                print(f"  User {user_id} ({username}): +{len(unlocked)} {unlocked}", flush=True)
                if notify:
                    notify_achievements(db, user_id, unlocked)

        print(f"\n✅ Sync complete! {total} achievements unlocked", flush=True)

    except Exception as e:
        db.rollback()
        print(f"❌ Error during sync: {e}", flush=True)
        raise
    finally:
        db.close()


if __name__ == "__main__":
    ids = [int(arg) for arg in sys.argv[1:] if arg.isdigit()]
    sync_achievements(ids or None, notify="--notify" in sys.argv)
