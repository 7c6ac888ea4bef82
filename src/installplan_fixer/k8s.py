from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar
import logging

from kubernetes import client, config
from kubernetes.client import ApiException

logger = logging.getLogger(__name__)

OLM_GROUP = "operators.coreos.com"
OLM_VERSION = "v1alpha1"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api
    batch_api: client.BatchV1Api
    custom_api: client.CustomObjectsApi


@dataclass(frozen=True)
class ResourceKind:
    kind: str
    plural: str
    group: str | None = None
    version: str | None = None

    @property
    def is_custom(self) -> bool:
        return self.group is not None


INSTALL_PLAN = ResourceKind(kind="InstallPlan", plural="installplans", group=OLM_GROUP, version=OLM_VERSION)
SUBSCRIPTION = ResourceKind(kind="Subscription", plural="subscriptions", group=OLM_GROUP, version=OLM_VERSION)
CATALOG_SOURCE = ResourceKind(kind="CatalogSource", plural="catalogsources", group=OLM_GROUP, version=OLM_VERSION)
JOB = ResourceKind(kind="Job", plural="jobs")
CONFIG_MAP = ResourceKind(kind="ConfigMap", plural="configmaps")

SUPPORTED_KINDS = {kind.kind: kind for kind in (INSTALL_PLAN, SUBSCRIPTION, CATALOG_SOURCE, JOB, CONFIG_MAP)}


class KubernetesAuthenticationError(RuntimeError):
    """Raised when Kubernetes authentication configuration fails."""


class ResourceClientError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ResourceNotFoundError(ResourceClientError):
    """Raised when the requested resource does not exist."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(
        api_client=api_client,
        core_api=client.CoreV1Api(api_client),
        batch_api=client.BatchV1Api(api_client),
        custom_api=client.CustomObjectsApi(api_client),
    )


class ResourceClient:
    """List, get and delete the handful of kinds the fixer touches.

    Every object is returned as a plain dict so OLM custom resources and
    typed core objects can be filtered and serialized the same way.
    """

    def __init__(
        self,
        clients: KubernetesClients,
        *,
        request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        self.clients = clients
        self.request_timeout_seconds = request_timeout_seconds

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        *,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        resource = _resource_kind(kind)
        scope = f"namespace '{namespace}'" if namespace else "all namespaces"
        kwargs: dict[str, Any] = {"_request_timeout": self.request_timeout_seconds}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector

        logger.debug("Listing %s in %s", resource.plural, scope)
        response = self._call(
            operation=f"list {resource.plural} in {scope}",
            hint=f"Verify API reachability and RBAC list verbs for {resource.plural}.",
            func=lambda: self._list(resource, namespace, kwargs),
        )
        if resource.is_custom:
            return list(response.get("items") or [])
        return [self._to_dict(item) for item in response.items or []]

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        resource = _resource_kind(kind)
        logger.debug("Reading %s %s/%s", resource.kind, namespace, name)
        response = self._call(
            operation=f"get {resource.kind} '{namespace}/{name}'",
            hint=f"Verify the {resource.kind} still exists and RBAC allows get on {resource.plural}.",
            func=lambda: self._get(resource, namespace, name),
        )
        return response if resource.is_custom else self._to_dict(response)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        resource = _resource_kind(kind)
        logger.debug("Deleting %s %s/%s", resource.kind, namespace, name)
        self._call(
            operation=f"delete {resource.kind} '{namespace}/{name}'",
            hint=f"Verify RBAC allows delete on {resource.plural}.",
            func=lambda: self._delete(resource, namespace, name),
        )

    def _list(self, resource: ResourceKind, namespace: str | None, kwargs: dict[str, Any]) -> Any:
        if resource.is_custom:
            if namespace:
                return self.clients.custom_api.list_namespaced_custom_object(
                    resource.group, resource.version, namespace, resource.plural, **kwargs
                )
            return self.clients.custom_api.list_cluster_custom_object(
                resource.group, resource.version, resource.plural, **kwargs
            )
        if resource is JOB:
            if namespace:
                return self.clients.batch_api.list_namespaced_job(namespace=namespace, **kwargs)
            return self.clients.batch_api.list_job_for_all_namespaces(**kwargs)
        if namespace:
            return self.clients.core_api.list_namespaced_config_map(namespace=namespace, **kwargs)
        return self.clients.core_api.list_config_map_for_all_namespaces(**kwargs)

    def _get(self, resource: ResourceKind, namespace: str, name: str) -> Any:
        timeout = self.request_timeout_seconds
        if resource.is_custom:
            return self.clients.custom_api.get_namespaced_custom_object(
                resource.group,
                resource.version,
                namespace,
                resource.plural,
                name,
                _request_timeout=timeout,
            )
        if resource is JOB:
            return self.clients.batch_api.read_namespaced_job(name=name, namespace=namespace, _request_timeout=timeout)
        return self.clients.core_api.read_namespaced_config_map(name=name, namespace=namespace, _request_timeout=timeout)

    def _delete(self, resource: ResourceKind, namespace: str, name: str) -> Any:
        timeout = self.request_timeout_seconds
        if resource.is_custom:
            return self.clients.custom_api.delete_namespaced_custom_object(
                resource.group,
                resource.version,
                namespace,
                resource.plural,
                name,
                _request_timeout=timeout,
            )
        if resource is JOB:
            # Background propagation removes the unpack pod along with the job.
            return self.clients.batch_api.delete_namespaced_job(
                name=name,
                namespace=namespace,
                body=client.V1DeleteOptions(propagation_policy="Background"),
                _request_timeout=timeout,
            )
        return self.clients.core_api.delete_namespaced_config_map(
            name=name,
            namespace=namespace,
            body=client.V1DeleteOptions(),
            _request_timeout=timeout,
        )

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self.clients.api_client.sanitize_for_serialization(obj)

    def _call(self, *, operation: str, hint: str, func: Callable[[], T]) -> T:
        try:
            return func()
        except ApiException as error:
            error_class = ResourceNotFoundError if error.status == 404 else ResourceClientError
            raise error_class(
                _format_api_exception_message(operation=operation, hint=hint, error=error),
                status=error.status,
            ) from error
        except Exception as error:
            raise ResourceClientError(f"Kubernetes API call failed while trying to {operation}: {error}. {hint}") from error


def project_field(obj: Any, path: str) -> list[Any]:
    """Project ``path`` out of ``obj`` like ``kubectl -o custom-columns``.

    ``path`` is dotted, with ``[]`` expanding every list element, e.g.
    ``status.bundleLookups[].path``. Missing segments produce no values.
    """
    values = [obj]
    for segment in path.strip(".").split("."):
        expand = segment.endswith("[]")
        key = segment[:-2] if expand else segment
        next_values: list[Any] = []
        for value in values:
            if not isinstance(value, dict) or value.get(key) is None:
                continue
            child = value[key]
            if expand:
                if isinstance(child, list):
                    next_values.extend(item for item in child if item is not None)
            else:
                next_values.append(child)
        values = next_values
    return values


def _resource_kind(kind: str) -> ResourceKind:
    try:
        return SUPPORTED_KINDS[kind]
    except KeyError:
        raise ValueError(f"unsupported resource kind: {kind}") from None


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return (
        f"Kubernetes API call failed while trying to {operation}: "
        f"API status {status} ({reason}). {hint}"
    )


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = str(error).strip() or error.__class__.__name__
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid, or log in with 'oc login'."
    )
