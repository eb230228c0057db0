"""
The only code path that changes a user's fluency level.

A transition is three writes against a store with no multi-key
transactions: the new state, a history entry, and (on upgrade) a
certificate. The new state is written first, with a compare-and-set against
the state that was validated, and carries a journal of the follow-up
writes. The journal is then replayed and cleared. If the process dies
halfway, the next read or transition of that user replays it again; the
follow-up records are keyed by the journal id, so nothing is written twice.
"""
import uuid
from dataclasses import replace
from typing import Optional

from app.fluency.audit import AuditLog
from app.fluency.certificates import CertificateIssuer
from app.fluency.errors import ConcurrentTransition, Forbidden, NotFound
from app.fluency.levels import parse_level
from app.fluency.models import (
    CERTIFICATE_FAILED,
    CERTIFICATE_ISSUED,
    CERTIFICATE_NOT_APPLICABLE,
    PendingTransition,
    TransitionResult,
    UserFluencyState,
    state_key,
    timestamp,
    utcnow,
)
from app.fluency.validator import Direction, validate


class TransitionExecutor:
    def __init__(self, store, audit: Optional[AuditLog] = None, issuer: Optional[CertificateIssuer] = None, clock=utcnow):
        self._store = store
        self._audit = audit or AuditLog(store)
        self._issuer = issuer or CertificateIssuer(store, clock=clock)
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    REPLAY_LIMIT = 20

    def load(self, user_id) -> tuple[Optional[UserFluencyState], Optional[TransitionResult]]:
        """
        Current state of *user_id* (None if it has none) with every unfinished
        journal replayed. The second item is the last replayed transition, if any.
        """
        replayed = None
        for _ in range(self.REPLAY_LIMIT):
            raw = self._store.get(state_key(user_id))
            if raw is None:
                return None, replayed
            state = UserFluencyState.from_dict(raw)
            if state.pending is None:
                return state, replayed
            print(f"[FLUENCY] replaying unfinished transition {state.pending.id} user={user_id}", flush=True)
            replayed = self.complete_pending(state, raw)
        raise ConcurrentTransition("Fluency level keeps changing concurrently; retry later")

    def read_state(self, user_id) -> Optional[UserFluencyState]:
        state, _ = self.load(user_id)
        return state

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def complete_pending(self, state: UserFluencyState, raw: Optional[dict] = None) -> TransitionResult:
        """Replay the follow-up writes recorded in *state*'s journal, then clear it."""
        pending = state.pending
        raw = raw if raw is not None else state.to_dict()

        self._audit.append(pending.history_entry(state.user_id))

        certificate = None
        status = CERTIFICATE_NOT_APPLICABLE
        if pending.issue_certificate:
            try:
                certificate = self._issuer.issue(
                    state.user_id,
                    pending.user_name or str(state.user_id),
                    pending.new_level,
                    pending.changed_by,
                    certificate_id=pending.id,
                )
                status = CERTIFICATE_ISSUED
            except Exception as e:
                # The level change stands; the response reports the failure
                print(f"[CERT] failed to issue certificate user={state.user_id} "
                      f"level={pending.new_level.value}: {type(e).__name__}: {e}", flush=True)
                status = CERTIFICATE_FAILED

        # The result describes this journal, whoever clears it or writes after it
        cleared = replace(state, pending=None)
        self._store.compare_and_set(state_key(state.user_id), raw, cleared.to_dict())

        return TransitionResult(
            state=cleared,
            previous_level=pending.previous_level,
            certificate=certificate,
            certificate_status=status,
        )

    def write_with_journal(self, expected_raw: Optional[dict], new_state: UserFluencyState) -> TransitionResult:
        """
        Store *new_state* (which must carry a journal) only if the stored state
        still equals *expected_raw* (None: only if there is none), then replay it.
        """
        if not self._store.compare_and_set(state_key(new_state.user_id), expected_raw, new_state.to_dict()):
            raise ConcurrentTransition("Fluency level was changed concurrently; reload and retry")
        return self.complete_pending(new_state)

    # ------------------------------------------------------------------
    # Transition
    # ------------------------------------------------------------------

    def transition(self, actor_id, actor_is_privileged: bool, target_user_id, requested_level,
                   user_name: Optional[str] = None, reason: Optional[str] = None,
                   actor_name: Optional[str] = None) -> TransitionResult:
        if not actor_is_privileged:
            print(f"[FLUENCY] forbidden: actor={actor_id} tried to change user={target_user_id}", flush=True)
            raise Forbidden("Admin access required")

        state, replayed = self.load(target_user_id)
        if state is None:
            raise NotFound("User not found")

        # A retried request whose first attempt stopped halfway
        if replayed is not None and replayed.state.level == parse_level(requested_level) \
                and replayed.previous_level is not None:
            return replayed

        direction = validate(state.level, requested_level)
        new_level = parse_level(requested_level)

        now = timestamp(self._clock())
        pending = PendingTransition(
            id=uuid.uuid4().hex,
            previous_level=state.level,
            new_level=new_level,
            changed_at=now,
            changed_by=actor_id,
            issue_certificate=direction == Direction.UPGRADE,
            user_name=user_name,
            reason=reason,
            changed_by_name=actor_name,
        )
        new_state = UserFluencyState(
            user_id=state.user_id,
            level=new_level,
            level_updated_at=now,
            level_updated_by=actor_id,
            pending=pending,
        )

        result = self.write_with_journal(state.to_dict(), new_state)
        print(f"[FLUENCY] actor={actor_id} user={target_user_id} "
              f"{state.level.value} -> {new_level.value} ({direction.value}) "
              f"certificate={result.certificate_status}", flush=True)
        return result
