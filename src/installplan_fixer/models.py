from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class FaultRecord:
    namespace: str
    name: str
    phase: str
    image: str
    bundle_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubscriptionRef:
    namespace: str
    name: str


@dataclass(frozen=True)
class SubscriptionLookup:
    selected: SubscriptionRef
    candidates: tuple[SubscriptionRef, ...]

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


@dataclass(frozen=True)
class BackupRecord:
    namespace: str
    install_plan: str
    job_id: str
    install_plan_path: str
    job_path: str
    config_map_path: str

    @property
    def paths(self) -> tuple[str, str, str]:
        return (self.install_plan_path, self.job_path, self.config_map_path)


class ItemState(str, Enum):
    PENDING = "pending"
    ID_DERIVED = "id_derived"
    BACKED_UP = "backed_up"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    record: FaultRecord
    state: ItemState
    job_id: str | None = None
    subscription: SubscriptionRef | None = None
    backup: BackupRecord | None = None
    message: str = ""


@dataclass(frozen=True)
class RemediationResult:
    outcomes: tuple[ItemOutcome, ...]

    @property
    def failed(self) -> tuple[ItemOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.state is ItemState.FAILED)

    @property
    def skipped(self) -> tuple[ItemOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.state is ItemState.PENDING)

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.skipped
