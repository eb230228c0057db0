import pytest

from app.fluency.audit import AuditLog
from app.fluency.certificates import CertificateIssuer
from app.fluency.errors import (
    ConcurrentTransition,
    Forbidden,
    InvalidTransition,
    NO_OP_TRANSITION,
    NotFound,
    SKIPPED_LEVEL,
    StorageFailure,
)
from app.fluency.executor import TransitionExecutor
from app.fluency.levels import Level
from app.fluency.migration import BackfillMigrator
from app.fluency.models import (
    CERTIFICATE_FAILED,
    CERTIFICATE_ISSUED,
    CERTIFICATE_NOT_APPLICABLE,
    UserFluencyState,
    state_key,
)

ADMIN = 100
USER = 1


@pytest.fixture
def executor(store, clock):
    return TransitionExecutor(store, clock=clock)


@pytest.fixture
def new_user(store, clock, executor):
    BackfillMigrator(store, executor=executor, clock=clock).initial_assignment(USER)
    return USER


def _history(store):
    return AuditLog(store).list_for(USER)


def _certificates(store):
    return CertificateIssuer(store).list_for(USER)


def _move(executor, *levels):
    return [executor.transition(ADMIN, True, USER, lvl, user_name="Anna") for lvl in levels]


def test_new_user_starts_at_a1(store, new_user):
    state = TransitionExecutor(store).read_state(USER)
    assert state.level == Level.A1
    assert state.level_updated_by is None
    history = _history(store)
    assert len(history) == 1
    assert history[0].previous_level is None
    assert history[0].new_level == Level.A1
    assert history[0].changed_by == "system"
    assert history[0].reason == "Initial assignment"


def test_upgrade_issues_first_certificate(store, executor, new_user):
    result = executor.transition(ADMIN, True, USER, "A2", user_name="Anna")

    assert result.state.level == Level.A2
    assert result.state.level_updated_by == ADMIN
    assert result.previous_level == Level.A1
    assert result.certificate_status == CERTIFICATE_ISSUED
    assert result.certificate.certificate_number == "DLA-2026-A2-000001"
    assert result.certificate.user_name == "Anna"
    assert result.certificate.issued_by == ADMIN

    latest = _history(store)[0]
    assert (latest.previous_level, latest.new_level, latest.changed_by) == (Level.A1, Level.A2, ADMIN)
    assert [c.id for c in _certificates(store)] == [result.certificate.id]

    payload = result.to_dict()
    assert payload["success"] is True
    assert payload["previousLevel"] == "A1"
    assert payload["newLevel"] == "A2"
    assert payload["metadata"]["name"] == "Elementary"
    assert payload["certificate"]["certificateNumber"] == "DLA-2026-A2-000001"


def test_skipped_level_changes_nothing(store, executor, new_user):
    before = store.get(state_key(USER))
    with pytest.raises(InvalidTransition) as exc:
        executor.transition(ADMIN, True, USER, "B1")
    assert exc.value.reason == SKIPPED_LEVEL
    assert store.get(state_key(USER)) == before
    assert len(_history(store)) == 1
    assert _certificates(store) == []


def test_same_level_is_rejected(executor, new_user):
    with pytest.raises(InvalidTransition) as exc:
        executor.transition(ADMIN, True, USER, "A1")
    assert exc.value.reason == NO_OP_TRANSITION


def test_downgrade_records_history_without_certificate(store, executor, new_user):
    _move(executor, "A2", "B1")
    result = executor.transition(ADMIN, True, USER, "A2")

    assert result.state.level == Level.A2
    assert result.certificate is None
    assert result.certificate_status == CERTIFICATE_NOT_APPLICABLE
    latest = _history(store)[0]
    assert (latest.previous_level, latest.new_level) == (Level.B1, Level.A2)
    assert len(_certificates(store)) == 2


def test_unprivileged_actor_is_forbidden(store, executor, new_user):
    before = store.get(state_key(USER))
    with pytest.raises(Forbidden):
        executor.transition(USER, False, USER, "A2")
    assert store.get(state_key(USER)) == before
    assert len(_history(store)) == 1


def test_forbidden_is_checked_before_lookup(executor):
    with pytest.raises(Forbidden):
        executor.transition(5, False, 12345, "A2")


def test_unknown_user(executor):
    with pytest.raises(NotFound):
        executor.transition(ADMIN, True, 12345, "A2")


def test_only_upgrades_yield_certificates(store, executor, new_user):
    results = _move(executor, "A2", "B1", "A2", "B1", "B2", "C1", "B2")
    for result in results:
        upgrade = result.state.level.ordinal > result.previous_level.ordinal
        assert (result.certificate is not None) == upgrade

    numbers = [c.certificate_number for c in _certificates(store)]
    assert numbers == [
        "DLA-2026-A2-000001",
        "DLA-2026-B1-000001",
        "DLA-2026-B1-000002",
        "DLA-2026-B2-000001",
        "DLA-2026-C1-000001",
    ]


def test_history_forms_a_chain(store, executor, new_user):
    _move(executor, "A2", "B1", "A2", "B1", "B2")
    chain = list(reversed(_history(store)))

    assert chain[0].previous_level is None
    for earlier, later in zip(chain, chain[1:]):
        assert earlier.new_level == later.previous_level
        assert earlier.changed_at < later.changed_at
    assert chain[-1].new_level == TransitionExecutor(store).read_state(USER).level


class BrokenIssuer(CertificateIssuer):
    def issue(self, *args, **kwargs):
        raise StorageFailure("counter unavailable")


def test_certificate_failure_keeps_the_transition(store, clock, new_user):
    executor = TransitionExecutor(store, issuer=BrokenIssuer(store), clock=clock)
    result = executor.transition(ADMIN, True, USER, "A2")

    assert result.state.level == Level.A2
    assert result.certificate is None
    assert result.certificate_status == CERTIFICATE_FAILED
    assert result.to_dict()["certificate"] is None
    assert _history(store)[0].new_level == Level.A2
    assert store.get(state_key(USER))["pendingTransition"] is None


class CrashingAudit(AuditLog):
    """Fails the first append, as if the process died after the state write."""

    def __init__(self, store):
        super().__init__(store)
        self.crashed = False

    def append(self, entry):
        if not self.crashed:
            self.crashed = True
            raise StorageFailure("connection lost")
        return super().append(entry)


def test_half_written_transition_is_replayed_once(store, clock, new_user):
    crashing = TransitionExecutor(store, audit=CrashingAudit(store), clock=clock)
    with pytest.raises(StorageFailure):
        crashing.transition(ADMIN, True, USER, "A2", user_name="Anna")

    raw = store.get(state_key(USER))
    assert raw["level"] == "A2"
    assert raw["pendingTransition"]["newLevel"] == "A2"
    assert len(_history(store)) == 1
    assert _certificates(store) == []

    # The caller retries the same request
    executor = TransitionExecutor(store, clock=clock)
    result = executor.transition(ADMIN, True, USER, "A2", user_name="Anna")
    assert result.previous_level == Level.A1
    assert result.certificate.certificate_number == "DLA-2026-A2-000001"

    # A second retry is now a plain no-op
    with pytest.raises(InvalidTransition) as exc:
        executor.transition(ADMIN, True, USER, "A2")
    assert exc.value.reason == NO_OP_TRANSITION

    assert len(_history(store)) == 2
    assert len(_certificates(store)) == 1
    assert store.get(state_key(USER))["pendingTransition"] is None


def test_reads_replay_unfinished_transitions(store, clock, new_user):
    crashing = TransitionExecutor(store, audit=CrashingAudit(store), clock=clock)
    with pytest.raises(StorageFailure):
        crashing.transition(ADMIN, True, USER, "A2")

    state = TransitionExecutor(store, clock=clock).read_state(USER)
    assert state.level == Level.A2
    assert state.pending is None
    assert _history(store)[0].new_level == Level.A2
    assert len(_certificates(store)) == 1


def test_stale_write_is_rejected(store, executor, new_user):
    stale = store.get(state_key(USER))
    executor.transition(ADMIN, True, USER, "A2")

    state = UserFluencyState.from_dict(stale)
    with pytest.raises(ConcurrentTransition):
        executor.write_with_journal(stale, state)
    assert executor.read_state(USER).level == Level.A2


class InterleavingAudit(AuditLog):
    """Lets a second actor move the user on before the first history entry lands."""

    def __init__(self, store, other, level):
        super().__init__(store)
        self.other = other
        self.level = level
        self.interleaved = False

    def append(self, entry):
        if not self.interleaved:
            self.interleaved = True
            self.other.transition(ADMIN + 1, True, USER, self.level, user_name="Anna")
        return super().append(entry)


def test_result_describes_its_own_transition(store, clock, new_user):
    other = TransitionExecutor(store, clock=clock)
    executor = TransitionExecutor(store, audit=InterleavingAudit(store, other, "B1"), clock=clock)

    result = executor.transition(ADMIN, True, USER, "A2", user_name="Anna")

    assert (result.previous_level, result.state.level) == (Level.A1, Level.A2)
    assert result.state.level_updated_by == ADMIN
    assert result.state.pending is None
    assert result.certificate.certificate_number == "DLA-2026-A2-000001"
    assert result.certificate_status == CERTIFICATE_ISSUED

    # The later change wins, and each change is recorded once
    assert TransitionExecutor(store).read_state(USER).level == Level.B1
    chain = [(h.previous_level, h.new_level, h.changed_by) for h in reversed(_history(store))]
    assert chain == [
        (None, Level.A1, "system"),
        (Level.A1, Level.A2, ADMIN),
        (Level.A2, Level.B1, ADMIN + 1),
    ]
    assert [c.certificate_number for c in _certificates(store)] == [
        "DLA-2026-A2-000001",
        "DLA-2026-B1-000001",
    ]
    assert store.get(state_key(USER))["pendingTransition"] is None


def test_unfinished_journal_is_replayed_before_the_next_change(store, clock, new_user):
    crashing = TransitionExecutor(store, audit=CrashingAudit(store), clock=clock)
    with pytest.raises(StorageFailure):
        crashing.transition(ADMIN, True, USER, "A2")

    # A different actor moves on from the half-written state
    executor = TransitionExecutor(store, clock=clock)
    result = executor.transition(ADMIN + 1, True, USER, "B1")
    assert (result.previous_level, result.state.level) == (Level.A2, Level.B1)

    chain = [(h.previous_level, h.new_level) for h in reversed(_history(store))]
    assert chain == [(None, Level.A1), (Level.A1, Level.A2), (Level.A2, Level.B1)]
    assert len(_certificates(store)) == 2


class RestlessStore:
    """Every read finds an unfinished journal that can never be cleared."""

    def __init__(self, store):
        self._store = store

    def __getattr__(self, name):
        return getattr(self._store, name)

    def get(self, key):
        raw = self._store.get(key)
        if key == state_key(USER) and raw is not None:
            raw = dict(raw, pendingTransition={
                "id": "stuck",
                "previousLevel": "A1",
                "newLevel": raw["level"],
                "changedAt": raw["levelUpdatedAt"],
                "changedBy": ADMIN,
            })
        return raw

    def compare_and_set(self, key, expected, new):
        return False


def test_endless_replays_give_up(store, clock, new_user):
    executor = TransitionExecutor(RestlessStore(store), clock=clock)
    with pytest.raises(ConcurrentTransition):
        executor.read_state(USER)


def test_actor_name_is_recorded(store, executor, new_user):
    executor.transition(ADMIN, True, USER, "A2", user_name="Anna", actor_name="Tom")
    latest = _history(store)[0]
    assert latest.changed_by_name == "Tom"
    assert latest.to_dict()["changedByName"] == "Tom"
    assert _history(store)[1].changed_by_name is None
