"""
Initial level assignment and backfill for accounts created before fluency
levels existed.

Signup, the lazy backfill on profile read and the admin bulk sweep all go
through _initialize(): insert-if-absent of an A1 state carrying a journal,
so the single history entry (previousLevel=None) is written exactly once no
matter how often, or how concurrently, this runs.
"""
import uuid
from typing import Iterable, Optional

from app.core.config import SYSTEM_ACTOR
from app.fluency.errors import ConcurrentTransition
from app.fluency.executor import TransitionExecutor
from app.fluency.levels import DEFAULT_LEVEL
from app.fluency.models import PendingTransition, UserFluencyState, timestamp, utcnow

REASON_SIGNUP = "Initial assignment"
REASON_LAZY = "Migration - Initial assignment"
REASON_BULK = "Bulk migration - Initial assignment"


class BackfillMigrator:
    def __init__(self, store, executor: Optional[TransitionExecutor] = None, clock=utcnow):
        self._store = store
        self._executor = executor or TransitionExecutor(store, clock=clock)
        self._clock = clock

    def _initialize(self, user_id, changed_by, reason: str, changed_by_name: Optional[str] = None) -> tuple[UserFluencyState, bool]:
        """Returns (state, created)."""
        existing = self._executor.read_state(user_id)
        if existing is not None:
            return existing, False

        now = timestamp(self._clock())
        state = UserFluencyState(
            user_id=user_id,
            level=DEFAULT_LEVEL,
            level_updated_at=now,
            level_updated_by=None if changed_by == SYSTEM_ACTOR else changed_by,
            pending=PendingTransition(
                id=uuid.uuid4().hex,
                previous_level=None,
                new_level=DEFAULT_LEVEL,
                changed_at=now,
                changed_by=changed_by,
                reason=reason,
                changed_by_name=changed_by_name,
            ),
        )
        try:
            result = self._executor.write_with_journal(None, state)
        except ConcurrentTransition:
            # Initialized by a concurrent call
            return self._executor.read_state(user_id), False
        return result.state, True

    def initial_assignment(self, user_id) -> UserFluencyState:
        """Called once when an account is created."""
        state, _ = self._initialize(user_id, SYSTEM_ACTOR, REASON_SIGNUP)
        return state

    def ensure_initialized(self, user_id) -> UserFluencyState:
        state, created = self._initialize(user_id, SYSTEM_ACTOR, REASON_LAZY)
        if created:
            print(f"[MIGRATE] user={user_id} assigned {DEFAULT_LEVEL.value}", flush=True)
        return state

    def bulk_migrate(self, actor_id, user_ids: Iterable, actor_name: Optional[str] = None) -> dict:
        migrated = 0
        skipped = 0
        for user_id in user_ids:
            _, created = self._initialize(user_id, actor_id, REASON_BULK, actor_name)
            if created:
                migrated += 1
                print(f"[MIGRATE] user={user_id} assigned {DEFAULT_LEVEL.value} by actor={actor_id}", flush=True)
            else:
                skipped += 1
        print(f"[MIGRATE] bulk sweep by actor={actor_id}: migrated={migrated} skipped={skipped}", flush=True)
        return {"migratedCount": migrated, "skippedCount": skipped}
