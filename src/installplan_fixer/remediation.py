from __future__ import annotations

from dataclasses import replace
from typing import Callable, Sequence
import logging

from .backup import BackupError, BackupManager
from .config import RunContext
from .correlator import CorrelationError, derive_unpack_job_id, find_owning_subscription
from .k8s import CONFIG_MAP, INSTALL_PLAN, JOB, ResourceClient, ResourceClientError
from .models import FaultRecord, ItemOutcome, ItemState, RemediationResult

logger = logging.getLogger(__name__)


class DeletionError(RuntimeError):
    """Raised when a backed-up resource cannot be deleted."""


class UserAbort(RuntimeError):
    """Raised when the operator declines the confirmation prompt."""


class RemediationEngine:
    """Walk each faulty install plan through id derivation, backup and deletion.

    The batch is gated by a single confirmation. Deletion only happens when
    the run context enables it, and only after all three backups succeeded.
    """

    def __init__(
        self,
        *,
        resource_client: ResourceClient,
        context: RunContext,
        backup_manager: BackupManager | None = None,
    ) -> None:
        self.resource_client = resource_client
        self.context = context
        self.backup_manager = backup_manager or BackupManager(resource_client=resource_client, context=context)

    def run(self, records: Sequence[FaultRecord], confirm: Callable[[], bool]) -> RemediationResult:
        if not records:
            return RemediationResult(outcomes=())

        if not confirm():
            raise UserAbort("Aborting: fix was not confirmed, no resources were changed.")

        outcomes: list[ItemOutcome] = []
        for index, record in enumerate(records):
            outcome = self.remediate_one(record)
            outcomes.append(outcome)
            if outcome.state is ItemState.FAILED and self.context.fail_fast:
                remaining = records[index + 1 :]
                if remaining:
                    logger.error("Stopping after first failure; %d install plan(s) left untouched", len(remaining))
                outcomes.extend(ItemOutcome(record=item, state=ItemState.PENDING) for item in remaining)
                break

        return RemediationResult(outcomes=tuple(outcomes))

    def remediate_one(self, record: FaultRecord) -> ItemOutcome:
        logger.info("Fixing install plan %s/%s...", record.namespace, record.name)
        outcome = ItemOutcome(record=record, state=ItemState.PENDING)
        try:
            logger.info("  * Getting unpack job id...")
            job_id = derive_unpack_job_id(self.resource_client, record, self.context.unpack_namespace)
            outcome = replace(outcome, state=ItemState.ID_DERIVED, job_id=job_id)
            logger.info("    unpack job: %s/%s", self.context.unpack_namespace, job_id)

            logger.info("  * Getting subscription...")
            subscription = find_owning_subscription(self.resource_client, record).selected
            outcome = replace(outcome, subscription=subscription)
            logger.info("    subscription: %s/%s", subscription.namespace, subscription.name)

            backup = self.backup_manager.backup_one(record, job_id)
            outcome = replace(outcome, state=ItemState.BACKED_UP, backup=backup)

            if not self.context.deletion_enabled:
                logger.info("  * Deletion disabled; resources left in place")
                return outcome

            self._delete_resources(record, job_id)
            return replace(outcome, state=ItemState.DELETED)
        except (CorrelationError, BackupError, DeletionError) as error:
            logger.error("Error: %s", error)
            return replace(outcome, state=ItemState.FAILED, message=str(error))

    def _delete_resources(self, record: FaultRecord, job_id: str) -> None:
        targets = (
            (JOB.kind, self.context.unpack_namespace, job_id),
            (CONFIG_MAP.kind, self.context.unpack_namespace, job_id),
            (INSTALL_PLAN.kind, record.namespace, record.name),
        )
        for kind, namespace, name in targets:
            logger.info("  * Deleting %s %s/%s...", kind, namespace, name)
            try:
                self.resource_client.delete(kind, namespace, name)
            except ResourceClientError as error:
                raise DeletionError(f"could not delete {kind} {namespace}/{name}: {error}") from error
