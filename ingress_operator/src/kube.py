from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client import (
    ApiException,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    RbacAuthorizationV1Api,
    V1ClusterRole,
    V1ClusterRoleBinding,
    V1DaemonSet,
    V1DeleteOptions,
    V1Namespace,
    V1Service,
    V1ServiceAccount,
)
from kubernetes.config.config_exception import ConfigException

from ingress_operator.src.errors import AlreadyExistsError, NotFoundError, PlatformError
from ingress_operator.src.metrics import METRICS
from ingress_operator.src.models import (
    CLUSTER_INGRESS_GROUP,
    CLUSTER_INGRESS_KIND,
    CLUSTER_INGRESS_PLURAL,
    CLUSTER_INGRESS_VERSION,
    ClusterIngress,
)

LOGGER = logging.getLogger(__name__)


def load_kube_configuration() -> None:
    """Load Kubernetes client configuration.

    In-cluster config is tried first; a local kubeconfig is the fallback for
    running the operator from a workstation.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        LOGGER.info("Loaded local kubeconfig")


@dataclass(frozen=True)
class KubeClients:
    core: CoreV1Api
    apps: AppsV1Api
    rbac: RbacAuthorizationV1Api
    custom: CustomObjectsApi


def build_clients() -> KubeClients:
    """Return typed API clients using the active kube configuration."""
    return KubeClients(
        core=client.CoreV1Api(),
        apps=client.AppsV1Api(),
        rbac=client.RbacAuthorizationV1Api(),
        custom=client.CustomObjectsApi(),
    )


class EnsureOutcome(enum.Enum):
    CREATED = "created"
    ADOPTED = "adopted"


@dataclass(frozen=True)
class _KindOps:
    kind: str
    namespaced: bool
    create: Callable[..., Any]
    read: Callable[..., Any]
    delete: Callable[..., Any]


def _identity(obj: Any) -> tuple[str | None, str]:
    metadata = getattr(obj, "metadata", None)
    namespace = getattr(metadata, "namespace", None)
    name = getattr(metadata, "name", None) or "<unnamed>"
    return namespace, name


class PlatformClient:
    """Create/get/delete/list primitives over the typed Kubernetes clients.

    Every call either succeeds or raises a :class:`PlatformError`.  The two
    conditions reconciliation absorbs are raised as the distinguishable
    subclasses :class:`AlreadyExistsError` and :class:`NotFoundError`.
    """

    def __init__(self, clients: KubeClients, logger: logging.Logger | None = None) -> None:
        self.clients = clients
        self.logger = logger or LOGGER
        core, apps, rbac = clients.core, clients.apps, clients.rbac
        self._ops: dict[type, _KindOps] = {
            V1ClusterRole: _KindOps(
                "ClusterRole", False,
                rbac.create_cluster_role, rbac.read_cluster_role, rbac.delete_cluster_role,
            ),
            V1Namespace: _KindOps(
                "Namespace", False,
                core.create_namespace, core.read_namespace, core.delete_namespace,
            ),
            V1ServiceAccount: _KindOps(
                "ServiceAccount", True,
                core.create_namespaced_service_account,
                core.read_namespaced_service_account,
                core.delete_namespaced_service_account,
            ),
            V1ClusterRoleBinding: _KindOps(
                "ClusterRoleBinding", False,
                rbac.create_cluster_role_binding,
                rbac.read_cluster_role_binding,
                rbac.delete_cluster_role_binding,
            ),
            V1DaemonSet: _KindOps(
                "DaemonSet", True,
                apps.create_namespaced_daemon_set,
                apps.read_namespaced_daemon_set,
                apps.delete_namespaced_daemon_set,
            ),
            V1Service: _KindOps(
                "Service", True,
                core.create_namespaced_service,
                core.read_namespaced_service,
                core.delete_namespaced_service,
            ),
        }

    def _ops_for(self, obj: Any) -> _KindOps:
        ops = self._ops.get(type(obj))
        if ops is None:
            raise TypeError(f"unsupported object type {type(obj).__name__}")
        return ops

    @staticmethod
    def _translate(
        exc: ApiException, action: str, kind: str, name: str, namespace: str | None
    ) -> PlatformError:
        error_cls: type[PlatformError] = PlatformError
        if exc.status == 409 and action == "create":
            error_cls = AlreadyExistsError
        elif exc.status == 404:
            error_cls = NotFoundError
        return error_cls(
            action=action,
            kind=kind,
            name=name,
            namespace=namespace,
            status=exc.status,
            reason=exc.reason,
        )

    def create(self, obj: Any) -> Any:
        ops = self._ops_for(obj)
        namespace, name = _identity(obj)
        kwargs: dict[str, Any] = {"body": obj}
        if ops.namespaced:
            kwargs["namespace"] = namespace
        try:
            return ops.create(**kwargs)
        except ApiException as exc:
            raise self._translate(exc, "create", ops.kind, name, namespace) from exc

    def get(self, obj: Any) -> Any:
        ops = self._ops_for(obj)
        namespace, name = _identity(obj)
        kwargs: dict[str, Any] = {"name": name}
        if ops.namespaced:
            kwargs["namespace"] = namespace
        try:
            return ops.read(**kwargs)
        except ApiException as exc:
            raise self._translate(exc, "get", ops.kind, name, namespace) from exc

    def delete(self, obj: Any) -> None:
        """Delete *obj*; dependents are left to the garbage collector."""
        ops = self._ops_for(obj)
        namespace, name = _identity(obj)
        kwargs: dict[str, Any] = {
            "name": name,
            "body": V1DeleteOptions(propagation_policy="Background"),
        }
        if ops.namespaced:
            kwargs["namespace"] = namespace
        try:
            ops.delete(**kwargs)
        except ApiException as exc:
            raise self._translate(exc, "delete", ops.kind, name, namespace) from exc
        METRICS.objects_deleted_total.labels(kind=ops.kind).inc()

    def ensure_created(self, obj: Any, fetch_existing: bool = False) -> tuple[EnsureOutcome, Any]:
        """Create *obj*, treating an existing object with the same identity as success.

        Returns the outcome and the authoritative object: the server's
        response on creation, the fetched object on adoption when
        *fetch_existing* is set, else the desired object itself.
        """
        ops = self._ops_for(obj)
        namespace, name = _identity(obj)
        target = f"{namespace}/{name}" if namespace else name
        try:
            created = self.create(obj)
        except AlreadyExistsError:
            METRICS.objects_adopted_total.labels(kind=ops.kind).inc()
            if not fetch_existing:
                return EnsureOutcome.ADOPTED, obj
            existing = self.get(obj)
            self.logger.debug("Adopted existing %s %s", ops.kind, target)
            return EnsureOutcome.ADOPTED, existing

        METRICS.objects_created_total.labels(kind=ops.kind).inc()
        self.logger.info("Created %s %s", ops.kind, target)
        return EnsureOutcome.CREATED, created if created is not None else obj

    def list_cluster_ingresses(self, namespace: str) -> list[ClusterIngress]:
        try:
            response = self.clients.custom.list_namespaced_custom_object(
                group=CLUSTER_INGRESS_GROUP,
                version=CLUSTER_INGRESS_VERSION,
                namespace=namespace,
                plural=CLUSTER_INGRESS_PLURAL,
            )
        except ApiException as exc:
            raise self._translate(exc, "list", CLUSTER_INGRESS_KIND, "*", namespace) from exc
        return [ClusterIngress.from_dict(item) for item in (response or {}).get("items", [])]

    def create_cluster_ingress(self, body: dict[str, Any]) -> ClusterIngress:
        metadata = body.get("metadata") or {}
        namespace, name = metadata.get("namespace"), metadata.get("name", "<unnamed>")
        try:
            created = self.clients.custom.create_namespaced_custom_object(
                group=CLUSTER_INGRESS_GROUP,
                version=CLUSTER_INGRESS_VERSION,
                namespace=namespace,
                plural=CLUSTER_INGRESS_PLURAL,
                body=body,
            )
        except ApiException as exc:
            raise self._translate(exc, "create", CLUSTER_INGRESS_KIND, name, namespace) from exc
        return ClusterIngress.from_dict(created or body)

    def update_cluster_ingress(self, ci: ClusterIngress) -> None:
        """Persist *ci* (finalizers included) with an optimistic-concurrency replace."""
        try:
            updated = self.clients.custom.replace_namespaced_custom_object(
                group=CLUSTER_INGRESS_GROUP,
                version=CLUSTER_INGRESS_VERSION,
                namespace=ci.namespace,
                plural=CLUSTER_INGRESS_PLURAL,
                name=ci.name,
                body=ci.to_dict(),
            )
        except ApiException as exc:
            raise self._translate(
                exc, "update", CLUSTER_INGRESS_KIND, ci.name, ci.namespace
            ) from exc
        if isinstance(updated, dict):
            ci.resource_version = (updated.get("metadata") or {}).get(
                "resourceVersion", ci.resource_version
            )
