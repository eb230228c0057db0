"""
Certificate numbering and issuance.

Numbers look like DLA-2026-A2-000001: one counter per (year, level),
advanced with the store's compare-and-set so that no two callers, in this
process or another, ever receive the same number.
"""
import threading
import uuid
from typing import Optional

from app.core.config import CERTIFICATE_PREFIX
from app.fluency.levels import Level
from app.fluency.models import (
    Certificate,
    certificate_key,
    certificate_prefix,
    counter_key,
    timestamp,
    utcnow,
)

# One lock per (year, level), shared by every numberer in this process
_allocation_locks: dict = {}
_allocation_locks_guard = threading.Lock()


def _lock_for(year: int, level: Level) -> threading.Lock:
    with _allocation_locks_guard:
        lock = _allocation_locks.get((year, level))
        if lock is None:
            lock = _allocation_locks[(year, level)] = threading.Lock()
        return lock


def format_certificate_number(prefix: str, year: int, level: Level, seq: int) -> str:
    return f"{prefix}-{year:04d}-{level.value}-{seq:06d}"


class CertificateNumberer:
    def __init__(self, store, prefix: str = CERTIFICATE_PREFIX, clock=utcnow):
        self._store = store
        self._prefix = prefix
        self._clock = clock

    def allocate(self, level: Level) -> str:
        year = self._clock().year
        # The lock keeps numbers gap-free within a worker; increment() is what
        # makes them unique across workers.
        with _lock_for(year, level):
            seq = self._store.increment(counter_key(year, level))
        return format_certificate_number(self._prefix, year, level, seq)

    def current(self, level: Level, year: Optional[int] = None) -> int:
        year = year or self._clock().year
        return int(self._store.get(counter_key(year, level)) or 0)


class CertificateIssuer:
    """Mints and stores certificates. Whether one is due is the caller's decision."""

    def __init__(self, store, numberer: Optional[CertificateNumberer] = None, clock=utcnow):
        self._store = store
        self._numberer = numberer or CertificateNumberer(store, clock=clock)
        self._clock = clock

    def issue(self, user_id, user_name: str, level: Level, issued_by, certificate_id: Optional[str] = None) -> Certificate:
        """
        Issue a certificate for *level*.

        Passing an existing *certificate_id* returns the stored certificate
        instead of minting a second one.
        """
        certificate_id = certificate_id or str(uuid.uuid4())
        key = certificate_key(user_id, certificate_id)

        existing = self._store.get(key)
        if existing is not None:
            return Certificate.from_dict(existing)

        certificate = Certificate(
            id=certificate_id,
            user_id=user_id,
            user_name=user_name,
            level=level,
            issued_at=timestamp(self._clock()),
            issued_by=issued_by,
            certificate_number=self._numberer.allocate(level),
        )
        if not self._store.add(key, certificate.to_dict()):
            # Lost a race with another replay of the same transition
            return Certificate.from_dict(self._store.get(key))

        print(f"[CERT] issued {certificate.certificate_number} user={user_id} level={level.value}", flush=True)
        return certificate

    def get(self, user_id, certificate_id: str) -> Optional[Certificate]:
        data = self._store.get(certificate_key(user_id, certificate_id))
        return Certificate.from_dict(data) if data is not None else None

    def list_for(self, user_id) -> list[Certificate]:
        """Oldest first."""
        rows = self._store.get_by_prefix(certificate_prefix(user_id))
        certificates = [Certificate.from_dict(r) for r in rows]
        return sorted(certificates, key=lambda c: c.issued_at)
