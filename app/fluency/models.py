"""
Records kept in the key/value store for fluency tracking.

Stored and returned on the wire as camelCase dicts.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from app.fluency.levels import Level


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def timestamp(dt: datetime) -> str:
    # Fixed width so ISO strings sort chronologically
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def state_key(user_id) -> str:
    return f"fluency:{user_id}"


def history_prefix(user_id) -> str:
    return f"fluency-history:{user_id}:"


def history_key(user_id, entry_id: str) -> str:
    return f"{history_prefix(user_id)}{entry_id}"


def certificate_prefix(user_id) -> str:
    return f"certificate:{user_id}:"


def certificate_key(user_id, certificate_id: str) -> str:
    return f"{certificate_prefix(user_id)}{certificate_id}"


def counter_key(year: int, level: Level) -> str:
    return f"certificate-counter:{year}:{level.value}"


@dataclass
class PendingTransition:
    """
    Journal of a level change whose follow-up writes may not have landed yet.

    Written together with the new level in one compare-and-set, then replayed
    (history entry, certificate) and cleared. Replaying twice is harmless
    because both follow-up records are keyed by the journal id.
    """

    id: str
    previous_level: Optional[Level]
    new_level: Level
    changed_at: str
    changed_by: Union[int, str]
    issue_certificate: bool = False
    user_name: Optional[str] = None
    reason: Optional[str] = None
    changed_by_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "previousLevel": self.previous_level.value if self.previous_level else None,
            "newLevel": self.new_level.value,
            "changedAt": self.changed_at,
            "changedBy": self.changed_by,
            "issueCertificate": self.issue_certificate,
            "userName": self.user_name,
            "reason": self.reason,
            "changedByName": self.changed_by_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingTransition":
        prev = data.get("previousLevel")
        return cls(
            id=data["id"],
            previous_level=Level(prev) if prev else None,
            new_level=Level(data["newLevel"]),
            changed_at=data["changedAt"],
            changed_by=data["changedBy"],
            issue_certificate=bool(data.get("issueCertificate")),
            user_name=data.get("userName"),
            reason=data.get("reason"),
            changed_by_name=data.get("changedByName"),
        )

    def history_entry(self, user_id) -> "HistoryEntry":
        return HistoryEntry(
            id=self.id,
            user_id=user_id,
            previous_level=self.previous_level,
            new_level=self.new_level,
            changed_at=self.changed_at,
            changed_by=self.changed_by,
            reason=self.reason,
            changed_by_name=self.changed_by_name,
        )


@dataclass
class UserFluencyState:
    user_id: int
    level: Level
    level_updated_at: str
    # None only for changes made by the system itself
    level_updated_by: Optional[Union[int, str]] = None
    pending: Optional[PendingTransition] = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "level": self.level.value,
            "levelUpdatedAt": self.level_updated_at,
            "levelUpdatedBy": self.level_updated_by,
            "pendingTransition": self.pending.to_dict() if self.pending else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserFluencyState":
        pending = data.get("pendingTransition")
        return cls(
            user_id=data["userId"],
            level=Level(data["level"]),
            level_updated_at=data["levelUpdatedAt"],
            level_updated_by=data.get("levelUpdatedBy"),
            pending=PendingTransition.from_dict(pending) if pending else None,
        )

    def to_public(self) -> dict:
        return {
            "userId": self.user_id,
            "level": self.level.value,
            "levelUpdatedAt": self.level_updated_at,
            "levelUpdatedBy": self.level_updated_by,
            "metadata": self.level.metadata,
        }


@dataclass
class HistoryEntry:
    id: str
    user_id: int
    previous_level: Optional[Level]
    new_level: Level
    changed_at: str
    changed_by: Union[int, str]
    reason: Optional[str] = None
    # Display name of the actor at the time of the change
    changed_by_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "previousLevel": self.previous_level.value if self.previous_level else None,
            "newLevel": self.new_level.value,
            "changedAt": self.changed_at,
            "changedBy": self.changed_by,
            "reason": self.reason,
            "changedByName": self.changed_by_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        prev = data.get("previousLevel")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            previous_level=Level(prev) if prev else None,
            new_level=Level(data["newLevel"]),
            changed_at=data["changedAt"],
            changed_by=data["changedBy"],
            reason=data.get("reason"),
            changed_by_name=data.get("changedByName"),
        )


@dataclass
class Certificate:
    id: str
    user_id: int
    user_name: str
    level: Level
    issued_at: str
    issued_by: Union[int, str]
    certificate_number: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "level": self.level.value,
            "issuedAt": self.issued_at,
            "issuedBy": self.issued_by,
            "certificateNumber": self.certificate_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Certificate":
        return cls(
            id=data["id"],
            user_id=data["userId"],
            user_name=data["userName"],
            level=Level(data["level"]),
            issued_at=data["issuedAt"],
            issued_by=data["issuedBy"],
            certificate_number=data["certificateNumber"],
        )


CERTIFICATE_ISSUED = "issued"
CERTIFICATE_FAILED = "failed"
CERTIFICATE_NOT_APPLICABLE = "not_applicable"


@dataclass
class TransitionResult:
    state: UserFluencyState
    previous_level: Optional[Level]
    certificate: Optional[Certificate] = None
    certificate_status: str = CERTIFICATE_NOT_APPLICABLE

    def to_dict(self) -> dict:
        return {
            "success": True,
            "userId": self.state.user_id,
            "previousLevel": self.previous_level.value if self.previous_level else None,
            "newLevel": self.state.level.value,
            "levelUpdatedAt": self.state.level_updated_at,
            "levelUpdatedBy": self.state.level_updated_by,
            "metadata": self.state.level.metadata,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "certificateStatus": self.certificate_status,
        }
