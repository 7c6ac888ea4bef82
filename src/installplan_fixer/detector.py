from __future__ import annotations

from typing import Any
import logging
import re

from .k8s import CATALOG_SOURCE, INSTALL_PLAN, ResourceClient, ResourceClientError, project_field
from .models import FaultRecord

logger = logging.getLogger(__name__)

FAILED_PHASE = "Failed"
STAGING_REGISTRY_DOMAIN = "registry.stage.redhat.io"
STAGING_REGISTRY_PATTERN = re.compile(r"registry[.]stage[.]redhat[.]io")

INSTALL_PLAN_COLUMNS = {
    "namespace": "metadata.namespace",
    "name": "metadata.name",
    "phase": "status.phase",
    "bundle_paths": "status.bundleLookups[].path",
}


class DetectionError(RuntimeError):
    """Raised when install plans cannot be queried."""


def detect(resource_client: ResourceClient) -> list[FaultRecord]:
    """Return failed install plans whose bundle lookups point at the staging registry.

    Rows keep the order the API server returned them in. No match is a valid
    result and yields an empty list.
    """
    try:
        install_plans = resource_client.list(INSTALL_PLAN.kind)
    except ResourceClientError as error:
        raise DetectionError(str(error)) from error

    records: list[FaultRecord] = []
    for install_plan in install_plans:
        record = _fault_record(install_plan)
        if record is not None:
            records.append(record)

    logger.debug("Inspected %d install plan(s), %d faulty", len(install_plans), len(records))
    return records


def is_staging_image(image: str) -> bool:
    return STAGING_REGISTRY_PATTERN.search(image) is not None


def find_staging_catalog_sources(resource_client: ResourceClient, namespace: str) -> list[tuple[str, str]]:
    """Return ``(name, image)`` for catalog sources still serving a staging index."""
    catalog_sources = resource_client.list(CATALOG_SOURCE.kind, namespace)
    polluted: list[tuple[str, str]] = []
    for catalog_source in catalog_sources:
        name = _first(project_field(catalog_source, "metadata.name"))
        image = _first(project_field(catalog_source, "spec.image"))
        if image and is_staging_image(image):
            polluted.append((name, image))
    return polluted


def _fault_record(install_plan: dict[str, Any]) -> FaultRecord | None:
    row = {column: project_field(install_plan, path) for column, path in INSTALL_PLAN_COLUMNS.items()}
    phase = _first(row["phase"])
    if phase != FAILED_PHASE:
        return None

    bundle_paths = tuple(str(path) for path in row["bundle_paths"])
    staging_paths = [path for path in bundle_paths if is_staging_image(path)]
    if not staging_paths:
        return None

    return FaultRecord(
        namespace=_first(row["namespace"]),
        name=_first(row["name"]),
        phase=phase,
        image=staging_paths[0],
        bundle_paths=bundle_paths,
    )


def _first(values: list[Any]) -> str:
    return str(values[0]) if values else ""
