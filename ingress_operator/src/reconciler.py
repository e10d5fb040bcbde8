from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from kubernetes.client import V1OwnerReference

from ingress_operator.src.errors import (
    AggregateReconcileError,
    AlreadyExistsError,
    BuildError,
    DeclarationFailure,
    ListError,
    NotFoundError,
    OperatorError,
    PlatformError,
    ScaffoldingError,
)
from ingress_operator.src.installconfig import InstallConfig
from ingress_operator.src.kube import PlatformClient
from ingress_operator.src.manifests import ManifestFactory
from ingress_operator.src.metrics import METRICS
from ingress_operator.src.models import (
    CLUSTER_INGRESS_FINALIZER,
    ClusterIngress,
    HighAvailabilityType,
)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation pass, in listing order."""

    ensured: tuple[str, ...] = ()
    torn_down: tuple[str, ...] = ()
    failures: tuple[DeclarationFailure, ...] = ()


def controller_owner_reference(owner: Any) -> V1OwnerReference:
    """Build a controlling owner reference pointing at *owner*, which must carry a uid."""
    metadata = getattr(owner, "metadata", None)
    uid = getattr(metadata, "uid", None)
    name = getattr(metadata, "name", None)
    if not uid or not name:
        raise OperatorError(f"cannot reference {name or '<unnamed>'}: owner has no uid")
    return V1OwnerReference(
        api_version=getattr(owner, "api_version", None) or "apps/v1",
        kind=getattr(owner, "kind", None) or "DaemonSet",
        name=name,
        uid=uid,
        controller=True,
        block_owner_deletion=True,
    )


def _is_controlled_by(obj: Any, owner_uid: str | None) -> bool:
    if owner_uid is None:
        return False
    refs = getattr(getattr(obj, "metadata", None), "owner_references", None) or []
    return any(ref.uid == owner_uid and ref.controller for ref in refs)


class Reconciler:
    """Converges router infrastructure toward the ClusterIngresses in a namespace.

    A pass has three phases:

    1. Shared scaffolding (cluster role, router namespace, service account,
       cluster role binding) is created in that order.  Failure aborts the
       pass because every router depends on it.
    2. All ClusterIngresses are listed.  Without a full inventory no partial
       work is attempted.
    3. Each ClusterIngress is torn down (deletion requested) or ensured.
       Failures are recorded per ClusterIngress and never stop the others.

    Every step is idempotent: creates absorb "already exists", deletes absorb
    "not found".  A pass can therefore be repeated, retried, or overlap with
    objects still converging from an earlier pass.
    """

    def __init__(
        self,
        platform: PlatformClient,
        factory: ManifestFactory,
        namespace: str,
        workers: int = 1,
        logger: logging.Logger | None = None,
    ) -> None:
        self.platform = platform
        self.factory = factory
        self.namespace = namespace
        self.workers = max(1, workers)
        self.logger = logger or logging.getLogger(__name__)

    def reconcile(self) -> ReconcileResult:
        """Run one full pass.

        Raises :class:`ScaffoldingError` or :class:`ListError` when the pass is
        aborted, and :class:`AggregateReconcileError` when one or more
        ClusterIngresses failed.  The aggregate carries the partial
        :class:`ReconcileResult`.
        """
        started = time.monotonic()
        try:
            result = self._reconcile()
        except AggregateReconcileError:
            METRICS.reconcile_passes_total.labels(result="partial").inc()
            raise
        except OperatorError:
            METRICS.reconcile_passes_total.labels(result="aborted").inc()
            raise
        finally:
            METRICS.reconcile_duration_seconds.observe(time.monotonic() - started)
        METRICS.reconcile_passes_total.labels(result="success").inc()
        return result

    def _reconcile(self) -> ReconcileResult:
        self.ensure_router_namespace()

        try:
            ingresses = self.platform.list_cluster_ingresses(self.namespace)
        except PlatformError as exc:
            raise ListError(f"failed to list clusteringresses: {exc}") from exc
        METRICS.managed_declarations.set(len(ingresses))

        if self.workers > 1 and len(ingresses) > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(ingresses))) as pool:
                outcomes = list(pool.map(self._reconcile_one, ingresses))
        else:
            outcomes = [self._reconcile_one(ci) for ci in ingresses]

        ensured: list[str] = []
        torn_down: list[str] = []
        failures: list[DeclarationFailure] = []
        for ci, failure in zip(ingresses, outcomes):
            if failure is not None:
                failures.append(failure)
            elif ci.deleting:
                torn_down.append(ci.name)
            else:
                ensured.append(ci.name)

        result = ReconcileResult(
            ensured=tuple(ensured),
            torn_down=tuple(torn_down),
            failures=tuple(failures),
        )
        if failures:
            METRICS.declaration_failures_total.inc(len(failures))
            raise AggregateReconcileError(failures, result=result)
        return result

    def _reconcile_one(self, ci: ClusterIngress) -> DeclarationFailure | None:
        step = self.teardown if ci.deleting else self.ensure
        try:
            step(ci)
        except Exception as exc:
            return DeclarationFailure(ci.name, exc)
        return None

    def ensure_router_namespace(self) -> None:
        """Ensure the shared scaffolding all routers run on exists."""
        try:
            scaffolding = self.factory.build_scaffolding()
        except BuildError as exc:
            raise ScaffoldingError(f"couldn't build router scaffolding: {exc}") from exc

        for obj in scaffolding:
            try:
                self.platform.ensure_created(obj)
            except PlatformError as exc:
                raise ScaffoldingError(f"couldn't create router {obj.kind}: {exc}") from exc

    def ensure(self, ci: ClusterIngress) -> None:
        """Bring router infrastructure for an active ClusterIngress to the desired state."""
        if ci.add_finalizer(CLUSTER_INGRESS_FINALIZER):
            self.platform.update_cluster_ingress(ci)
            METRICS.finalizer_updates_total.labels(action="added").inc()
            self.logger.info("Added finalizer to clusteringress %s/%s", ci.namespace, ci.name)

        desired = self.factory.router_daemon_set(ci)
        _, daemon_set = self.platform.ensure_created(desired, fetch_existing=True)

        if ci.spec.high_availability is HighAvailabilityType.CLOUD:
            service = self.factory.router_service_cloud(ci)
            service.metadata.owner_references = [controller_owner_reference(daemon_set)]
            self.platform.ensure_created(service)
        else:
            self._retract_router_service(ci, daemon_set)

    def _retract_router_service(self, ci: ClusterIngress, daemon_set: Any) -> None:
        """Delete a cloud Service left behind after HA moved away from ``Cloud``.

        Only a Service controlled by this ClusterIngress's DaemonSet is
        removed; anything else with the same name is not ours.
        """
        desired = self.factory.router_service_cloud(ci)
        try:
            existing = self.platform.get(desired)
        except NotFoundError:
            return

        owner_uid = getattr(getattr(daemon_set, "metadata", None), "uid", None)
        if not _is_controlled_by(existing, owner_uid):
            return

        try:
            self.platform.delete(existing)
        except NotFoundError:
            return
        self.logger.info(
            "Deleted router service %s/%s; clusteringress %s no longer requests cloud exposure",
            desired.metadata.namespace,
            desired.metadata.name,
            ci.name,
        )

    def teardown(self, ci: ClusterIngress) -> None:
        """Delete router infrastructure for a deleting ClusterIngress, then release it.

        The finalizer is only removed after the DaemonSet delete returned
        success or not-found, so the ClusterIngress can never vanish while its
        routers might still run.
        """
        daemon_set = self.factory.router_daemon_set_identity(ci)
        try:
            self.platform.delete(daemon_set)
            self.logger.info(
                "Deleted router daemonset %s/%s for clusteringress %s",
                daemon_set.metadata.namespace,
                daemon_set.metadata.name,
                ci.name,
            )
        except NotFoundError:
            self.logger.debug(
                "Router daemonset %s/%s already gone",
                daemon_set.metadata.namespace,
                daemon_set.metadata.name,
            )

        if ci.remove_finalizer(CLUSTER_INGRESS_FINALIZER):
            self.platform.update_cluster_ingress(ci)
            METRICS.finalizer_updates_total.labels(action="removed").inc()
            self.logger.info("Removed finalizer from clusteringress %s/%s", ci.namespace, ci.name)

    def ensure_default_cluster_ingress(self, install_config: InstallConfig) -> bool:
        """Create the ``default`` ClusterIngress; return whether it was created."""
        body = self.factory.default_cluster_ingress(install_config, self.namespace)
        try:
            self.platform.create_cluster_ingress(body)
        except AlreadyExistsError:
            return False
        self.logger.info(
            "Created default clusteringress %s/%s", self.namespace, body["metadata"]["name"]
        )
        return True
