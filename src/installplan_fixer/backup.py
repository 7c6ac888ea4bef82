from __future__ import annotations

from pathlib import Path
from typing import Any
import logging
import re

import yaml

from .config import RunContext
from .k8s import CONFIG_MAP, INSTALL_PLAN, JOB, ResourceClient
from .models import BackupRecord, FaultRecord

logger = logging.getLogger(__name__)


class BackupError(RuntimeError):
    def __init__(self, *, stage: str, reason: str) -> None:
        normalized_reason = reason.strip() or "unknown error"
        super().__init__(f"{stage} backup failed: {normalized_reason}")
        self.stage = stage


class BackupManager:
    """Snapshot the resources of a faulty install plan before anything is deleted.

    Each kind goes to its own file in the run's backup directory. Any failed
    read or write raises ``BackupError``; files already written are left in
    place for manual recovery.
    """

    def __init__(self, *, resource_client: ResourceClient, context: RunContext) -> None:
        self.resource_client = resource_client
        self.context = context
        self.context.backup_dir.mkdir(parents=True, exist_ok=True)

    def backup_one(self, record: FaultRecord, job_id: str) -> BackupRecord:
        if not job_id:
            raise BackupError(stage="job", reason="unpack job id is required")

        install_plan_path = self._backup_resource(
            stage="installplan",
            kind=INSTALL_PLAN.kind,
            namespace=record.namespace,
            name=record.name,
            target=backup_path(self.context.backup_dir, record, "installplan"),
        )
        job_path = self._backup_resource(
            stage="job",
            kind=JOB.kind,
            namespace=self.context.unpack_namespace,
            name=job_id,
            target=backup_path(self.context.backup_dir, record, "job"),
        )
        config_map_path = self._backup_resource(
            stage="configmap",
            kind=CONFIG_MAP.kind,
            namespace=self.context.unpack_namespace,
            name=job_id,
            target=backup_path(self.context.backup_dir, record, "configmap"),
        )

        return BackupRecord(
            namespace=record.namespace,
            install_plan=record.name,
            job_id=job_id,
            install_plan_path=str(install_plan_path),
            job_path=str(job_path),
            config_map_path=str(config_map_path),
        )

    def _backup_resource(self, *, stage: str, kind: str, namespace: str, name: str, target: Path) -> Path:
        logger.info("  * Backing up %s %s/%s to %s", kind, namespace, name, target)
        try:
            resource = self.resource_client.get(kind, namespace, name)
        except Exception as error:  # pylint: disable=broad-except
            raise BackupError(stage=stage, reason=_error_message(error)) from error

        try:
            _write_yaml(target, resource)
        except FileExistsError as error:
            raise BackupError(stage=stage, reason=f"refusing to overwrite existing backup {target}") from error
        except Exception as error:  # pylint: disable=broad-except
            raise BackupError(stage=stage, reason=_error_message(error)) from error
        return target


def backup_path(backup_dir: Path, record: FaultRecord, suffix: str) -> Path:
    safe_namespace = _sanitize_filesystem_component(record.namespace)
    safe_name = _sanitize_filesystem_component(record.name)
    return backup_dir / f"{safe_namespace}__{safe_name}.{suffix}.yaml"


def _write_yaml(target: Path, resource: dict[str, Any]) -> None:
    if not resource:
        raise RuntimeError("API returned an empty object")
    # Exclusive create: a backup is never replaced by another one.
    with target.open("x", encoding="utf-8") as handle:
        yaml.safe_dump(resource, handle, default_flow_style=False, sort_keys=False)


def _sanitize_filesystem_component(value: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", value)
    return sanitized or "unknown"


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
