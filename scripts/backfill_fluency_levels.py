"""
Backfill script: give every account without a fluency level the starting level.

SAFE to run multiple times: accounts that already have a level are skipped
and never get a second history entry.

Usage:
    python scripts/backfill_fluency_levels.py <actor_user_id>
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from app.db.base import Base, engine
from app.db.session import SessionLocal
from app.db.kv_store import KeyValueStore
from app.auth.models import User
from app.fluency.migration import BackfillMigrator


def backfill_fluency_levels(actor_id: int) -> dict:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user_ids = [row[0] for row in db.query(User.id).order_by(User.id.asc()).all()]
        actor = db.query(User).filter(User.id == actor_id).first()
        actor_name = actor.display_name if actor else None
    finally:
        db.close()

    print(f"Found {len(user_ids)} users to process", flush=True)
    counts = BackfillMigrator(KeyValueStore(SessionLocal)).bulk_migrate(actor_id, user_ids, actor_name=actor_name)
    print(f"✅ Backfill complete: migrated={counts['migratedCount']} skipped={counts['skippedCount']}", flush=True)
    return counts


if __name__ == "__main__":
    if len(sys.argv) != 2 or not sys.argv[1].isdigit():
        print(__doc__)
        sys.exit(2)
    try:
        backfill_fluency_levels(int(sys.argv[1]))
    except Exception as e:
        print(f"❌ Error during backfill: {e}", flush=True)
        sys.exit(1)
