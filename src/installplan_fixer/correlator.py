from __future__ import annotations

from typing import Any
import logging
import re

from .k8s import INSTALL_PLAN, SUBSCRIPTION, ResourceClient, ResourceClientError, project_field
from .models import FaultRecord, SubscriptionLookup, SubscriptionRef

logger = logging.getLogger(__name__)

BUNDLE_LOOKUP_PENDING = "BundleLookupPending"

# Job names are DNS labels.
_JOB_ID_PATTERN = r"[a-z0-9]([-a-z0-9.]*[a-z0-9])?"
# Text between a pod reference and its image never spans another pod reference.
_SAME_REFERENCE_GAP = r"(?:(?!Unpack pod\().)*"


class CorrelationError(RuntimeError):
    """Raised when a faulty install plan cannot be tied to its related resources."""


class UnpackJobIdError(CorrelationError):
    """Raised when the unpack job id cannot be read from the install plan status."""


class SubscriptionNotFoundError(CorrelationError):
    """Raised when no subscription references the install plan."""


def extract_unpack_job_id(message: str | None, image: str, unpack_namespace: str) -> str | None:
    if not message or not image:
        return None

    pattern = re.compile(
        rf"Unpack pod\({re.escape(unpack_namespace)}/(?P<job_id>{_JOB_ID_PATTERN})\) "
        rf"container\(pull\) {_SAME_REFERENCE_GAP}\"{re.escape(image)}\"",
        re.DOTALL,
    )
    match = pattern.search(message)
    if match is None:
        return None
    return match.group("job_id")


def bundle_lookup_pending_messages(install_plan: dict[str, Any]) -> list[str]:
    messages: list[str] = []
    for condition in project_field(install_plan, "status.bundleLookups[].conditions[]"):
        if isinstance(condition, dict) and condition.get("type") == BUNDLE_LOOKUP_PENDING:
            message = condition.get("message")
            if message:
                messages.append(str(message))
    return messages


def derive_unpack_job_id(resource_client: ResourceClient, record: FaultRecord, unpack_namespace: str) -> str:
    """Read the unpack job id out of the install plan's pending-lookup message.

    The id is never recomputed from the image; the controller's naming is an
    implementation detail and the status text is the only reliable source.
    """
    try:
        install_plan = resource_client.get(INSTALL_PLAN.kind, record.namespace, record.name)
    except ResourceClientError as error:
        raise CorrelationError(str(error)) from error

    messages = bundle_lookup_pending_messages(install_plan)
    for message in messages:
        job_id = extract_unpack_job_id(message, record.image, unpack_namespace)
        if job_id:
            return job_id

    detail = "no BundleLookupPending condition found" if not messages else "no unpack pod reference for the image"
    raise UnpackJobIdError(
        f"Could not identify unpack job id for install plan {record.namespace}/{record.name} ({detail})"
    )


def find_owning_subscription(resource_client: ResourceClient, record: FaultRecord) -> SubscriptionLookup:
    try:
        subscriptions = resource_client.list(SUBSCRIPTION.kind)
    except ResourceClientError as error:
        raise CorrelationError(str(error)) from error

    candidates: list[SubscriptionRef] = []
    for subscription in subscriptions:
        ref_namespace = project_field(subscription, "status.installPlanRef.namespace")
        ref_name = project_field(subscription, "status.installPlanRef.name")
        if ref_namespace == [record.namespace] and ref_name == [record.name]:
            metadata = subscription.get("metadata") or {}
            candidates.append(SubscriptionRef(namespace=metadata.get("namespace", ""), name=metadata.get("name", "")))

    if not candidates:
        raise SubscriptionNotFoundError(
            f"Could not determine owning subscription for install plan {record.namespace}/{record.name}"
        )

    lookup = SubscriptionLookup(selected=candidates[0], candidates=tuple(candidates))
    if lookup.ambiguous:
        names = ", ".join(f"{ref.namespace}/{ref.name}" for ref in lookup.candidates)
        logger.warning(
            "Install plan %s/%s is referenced by %d subscriptions (%s); using %s/%s",
            record.namespace,
            record.name,
            len(lookup.candidates),
            names,
            lookup.selected.namespace,
            lookup.selected.name,
        )
    return lookup
