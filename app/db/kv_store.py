"""
Key/value store over a single SQLAlchemy table.

Each call runs in its own short transaction; there is no way to group
several keys into one transaction. Append-only records use add(), counters
and conditional updates use compare_and_set().
"""
import json
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, insert, select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql import func

from app.db.base import Base
from app.fluency.errors import StorageFailure


class KVEntry(Base):
    __tablename__ = "kv_store"

    # Insertion order for prefix scans
    id = Column(Integer, primary_key=True, autoincrement=True)

    key = Column(String(512), unique=True, index=True, nullable=False)

    # Canonical JSON (sorted keys) so compare_and_set can match on text
    value = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


def encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def decode(raw: str) -> Any:
    return json.loads(raw)


_table = KVEntry.__table__


class KeyValueStore:
    INCREMENT_ATTEMPTS = 50

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _run(self, fn):
        db = self._session_factory()
        try:
            result = fn(db)
            db.commit()
            return result
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            print(f"[KV] storage error: {type(e).__name__}: {e}", flush=True)
            raise StorageFailure(f"Storage failure: {type(e).__name__}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Plain reads / writes
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        raw = self._run(
            lambda db: db.execute(select(_table.c.value).where(_table.c.key == key)).scalar()
        )
        return decode(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        """Upsert."""
        encoded = encode(value)

        def _write(db):
            res = db.execute(update(_table).where(_table.c.key == key).values(value=encoded))
            if res.rowcount == 0:
                db.execute(insert(_table).values(key=key, value=encoded))

        try:
            self._run(_write)
        except IntegrityError:
            # Inserted by someone else between our update and insert
            self._run(
                lambda db: db.execute(update(_table).where(_table.c.key == key).values(value=encoded))
            )

    def add(self, key: str, value: Any) -> bool:
        """Insert only. Returns False when the key already exists."""
        encoded = encode(value)
        try:
            self._run(lambda db: db.execute(insert(_table).values(key=key, value=encoded)))
        except IntegrityError:
            return False
        return True

    def delete(self, key: str) -> None:
        self._run(lambda db: db.execute(delete(_table).where(_table.c.key == key)))

    def get_by_prefix(self, prefix: str) -> list:
        """Values whose key starts with *prefix*, in insertion order."""
        rows = self._run(
            lambda db: db.execute(
                select(_table.c.value)
                .where(_table.c.key.startswith(prefix, autoescape=True))
                .order_by(_table.c.id.asc())
            ).scalars().all()
        )
        return [decode(r) for r in rows]

    def keys_by_prefix(self, prefix: str) -> list[str]:
        return self._run(
            lambda db: db.execute(
                select(_table.c.key)
                .where(_table.c.key.startswith(prefix, autoescape=True))
                .order_by(_table.c.id.asc())
            ).scalars().all()
        )

    # ------------------------------------------------------------------
    # Atomic primitives
    # ------------------------------------------------------------------

    def compare_and_set(self, key: str, expected: Any, new: Any) -> bool:
        """
        Write *new* only if the stored value still equals *expected*.
        expected=None means "only if the key is absent".
        """
        if expected is None:
            return self.add(key, new)

        res_count = self._run(
            lambda db: db.execute(
                update(_table)
                .where(_table.c.key == key, _table.c.value == encode(expected))
                .values(value=encode(new))
            ).rowcount
        )
        return res_count == 1

    def increment(self, key: str) -> int:
        """Atomic fetch-and-add on an integer value. Missing keys start at 0."""
        for _ in range(self.INCREMENT_ATTEMPTS):
            current = self.get(key)
            if current is None:
                if self.compare_and_set(key, None, 1):
                    return 1
                continue
            nxt = int(current) + 1
            if self.compare_and_set(key, current, nxt):
                return nxt
        raise StorageFailure(f"Could not increment {key}: too much contention")
