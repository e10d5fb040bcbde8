from __future__ import annotations

import logging
import queue
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException

from ingress_operator.src.errors import AggregateReconcileError, ListError, ScaffoldingError
from ingress_operator.src.kube import KubeClients
from ingress_operator.src.metrics import METRICS
from ingress_operator.src.models import (
    CLUSTER_INGRESS_GROUP,
    CLUSTER_INGRESS_PLURAL,
    CLUSTER_INGRESS_VERSION,
)
from ingress_operator.src.reconciler import Reconciler


@dataclass(frozen=True)
class WatchSource:
    """One stream of change notifications that should trigger a pass.

    ``list_fn`` must be the unwrapped API method: the watch helper reads its
    docstring to deserialize events.
    """

    kind: str
    list_fn: Callable[..., Any]
    kwargs: dict[str, Any] = field(default_factory=dict)


def build_watch_sources(
    clients: KubeClients, watch_namespace: str, router_namespace: str
) -> list[WatchSource]:
    """Watch ClusterIngresses plus the router objects derived from them.

    Router objects are watched so out-of-band deletes are repaired without
    waiting for the periodic resync.
    """
    return [
        WatchSource(
            kind="clusteringress",
            list_fn=clients.custom.list_namespaced_custom_object,
            kwargs={
                "group": CLUSTER_INGRESS_GROUP,
                "version": CLUSTER_INGRESS_VERSION,
                "namespace": watch_namespace,
                "plural": CLUSTER_INGRESS_PLURAL,
            },
        ),
        WatchSource(
            kind="daemonset",
            list_fn=clients.apps.list_namespaced_daemon_set,
            kwargs={"namespace": router_namespace},
        ),
        WatchSource(
            kind="service",
            list_fn=clients.core.list_namespaced_service,
            kwargs={"namespace": router_namespace},
        ),
    ]


def _metadata_value(obj: Any, dict_key: str, attr: str) -> str | None:
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get(dict_key)
    return getattr(getattr(obj, "metadata", None), attr, None)


class EventDispatcher:
    """Turns change notifications into serialized reconciliation passes.

    Notifications land in a queue holding at most one pending trigger.  While
    a pass is queued, further notifications are folded into it: every pass
    reconciles the whole namespace, so one queued pass already covers them.
    If nothing arrives for ``resync_seconds`` a pass runs anyway, which keeps
    convergence level-triggered even when a watch silently misses events.

    A single worker (the thread calling :meth:`run_forever`) executes passes,
    so passes never overlap.  Each watch source runs list-then-watch in its
    own daemon thread.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        sources: list[WatchSource] | None = None,
        resync_seconds: float = 300,
        logger: logging.Logger | None = None,
    ) -> None:
        self.reconciler = reconciler
        self.sources = list(sources or [])
        self.resync_seconds = resync_seconds
        self.logger = logger or logging.getLogger(__name__)

        self.ready = threading.Event()
        self._triggers: queue.Queue[tuple[str, str]] = queue.Queue(maxsize=1)
        self._external_stop = threading.Event()
        self._active_watchers: set[watch.Watch] = set()
        self._watcher_lock = threading.Lock()

    def notify(self, kind: str, name: str = "") -> bool:
        """Request a pass; return False when it was coalesced into a queued one."""
        METRICS.triggers_total.labels(source=kind).inc()
        try:
            self._triggers.put_nowait((kind, name))
        except queue.Full:
            METRICS.triggers_coalesced_total.inc()
            self.logger.debug("Coalesced trigger for %s %s into queued pass", kind, name)
            return False
        return True

    def request_stop(self) -> None:
        """Request a cooperative stop and interrupt every open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            watchers = list(self._active_watchers)
        for watcher in watchers:
            watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def run_once(self) -> bool:
        """Run one pass, logging every failure; return whether it fully succeeded."""
        try:
            result = self.reconciler.reconcile()
        except AggregateReconcileError as exc:
            # Scaffolding and listing succeeded, so the operator is functional.
            self.ready.set()
            for failure in exc.failures:
                self.logger.error(
                    "Reconciliation failed for clusteringress %s: %s",
                    failure.name,
                    failure.error,
                )
            return False
        except (ScaffoldingError, ListError):
            self.logger.exception("Reconciliation pass aborted")
            return False
        except Exception:
            self.logger.exception("Unexpected error during reconciliation pass")
            return False

        self.ready.set()
        self.logger.info(
            "Reconciliation pass complete (ensured=%d, torn_down=%d)",
            len(result.ensured),
            len(result.torn_down),
        )
        return True

    def _next_trigger(self, stop: threading.Event) -> tuple[str, str] | None:
        """Block until a trigger arrives, the resync interval elapses, or stop."""
        deadline = time.monotonic() + self.resync_seconds
        while not self._should_stop(stop):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                METRICS.triggers_total.labels(source="resync").inc()
                return ("resync", "")
            try:
                return self._triggers.get(timeout=min(1.0, remaining))
            except queue.Empty:
                continue
        return None

    def _watch_source(self, source: WatchSource, stop: threading.Event) -> None:
        """List-then-watch one source until stop, notifying on every event.

        ``410 Gone`` re-lists and triggers a pass since events may have been
        missed.  ``401``/``403`` end this source: RBAC problems do not heal by
        retrying.  Other errors back off exponentially with jitter up to 30 s.
        """
        resource_version: str | None = None
        backoff_seconds = 1

        while not self._should_stop(stop):
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watchers.add(watcher)
            try:
                if resource_version is None:
                    listing = source.list_fn(**source.kwargs)
                    resource_version = _metadata_value(
                        listing, "resourceVersion", "resource_version"
                    )

                for event in watcher.stream(
                    source.list_fn,
                    resource_version=resource_version,
                    timeout_seconds=30,
                    **source.kwargs,
                ):
                    if self._should_stop(stop):
                        break
                    obj = event.get("object")
                    if obj is None:
                        continue
                    version = _metadata_value(obj, "resourceVersion", "resource_version")
                    if version:
                        resource_version = version
                    name = _metadata_value(obj, "name", "name") or ""
                    self.logger.debug(
                        "Observed %s event for %s %s", event.get("type"), source.kind, name
                    )
                    self.notify(source.kind, name)
                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    self.logger.warning(
                        "Watch resource version for %s expired, re-listing", source.kind
                    )
                    resource_version = None
                    self.notify(source.kind, "")
                    continue
                METRICS.watch_errors_total.labels(source=source.kind).inc()
                if exc.status in {401, 403}:
                    self.logger.error(
                        "Kubernetes API access denied watching %s (status=%s). "
                        "Check operator RBAC and service account permissions.",
                        source.kind,
                        exc.status,
                    )
                    return
                self.logger.exception("Kubernetes API watch error for %s", source.kind)
                resource_version = None
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            except Exception:
                METRICS.watch_errors_total.labels(source=source.kind).inc()
                self.logger.exception("Unexpected watch error for %s", source.kind)
                resource_version = None
                jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
                stop.wait(timeout=jittered)
                backoff_seconds = min(backoff_seconds * 2, 30)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    self._active_watchers.discard(watcher)

    def run_forever(self, shutdown_event: threading.Event | None = None) -> None:
        """Start every watch source and process triggers until shutdown."""
        stop = shutdown_event or threading.Event()
        self._external_stop.clear()

        threads = [
            threading.Thread(
                target=self._watch_source,
                args=(source, stop),
                name=f"watch-{source.kind}",
                daemon=True,
            )
            for source in self.sources
        ]
        for thread in threads:
            thread.start()

        self.notify("startup")
        while True:
            trigger = self._next_trigger(stop)
            if trigger is None:
                break
            kind, name = trigger
            if name:
                self.logger.info("Reconciling for update to %s %s", kind, name)
            else:
                self.logger.info("Reconciling (%s)", kind)
            self.run_once()

        self.request_stop()
        self.ready.clear()
        self.logger.info("Event dispatcher stopped")
