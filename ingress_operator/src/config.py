from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


class ConfigError(RuntimeError):
    """Raised when the operator configuration is invalid."""


@dataclass(frozen=True)
class OperatorConfig:
    """Immutable operator configuration loaded at startup.

    Attributes:
        watch_namespace: Namespace holding the ClusterIngress resources.
        router_namespace: Namespace the router DaemonSets and Services live in.
        router_image: Container image run by every router DaemonSet.
        resync_seconds: Upper bound on the time between two reconciliation passes.
        reconcile_workers: Parallelism for per-ClusterIngress work inside a pass.
        health_port: Port for ``/healthz``, ``/readyz`` and ``/metrics``.
        install_config_namespace: Namespace of the installer ConfigMap.
        install_config_name: Name of the installer ConfigMap.
        create_default_cluster_ingress: Whether to create the ``default``
            ClusterIngress at startup.
    """

    watch_namespace: str
    router_namespace: str
    router_image: str
    resync_seconds: int = 300
    reconcile_workers: int = 1
    health_port: int = 8080
    install_config_namespace: str = "kube-system"
    install_config_name: str = "cluster-config-v1"
    create_default_cluster_ingress: bool = True


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    values: Mapping[str, str],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def _non_empty(values: Mapping[str, str], name: str, default: str | None) -> str:
    raw = values.get(name, default)
    if raw is None or not raw.strip():
        raise ConfigError(f"{name} must be a non-empty string")
    return raw.strip()


def load_config(env: Mapping[str, str] | None = None) -> OperatorConfig:
    """Load operator config from the environment.

    ``IMAGE`` has no default: running routers from an unpinned image is never
    what an installation wants, so startup fails with :class:`ConfigError`.
    """
    values = env if env is not None else os.environ

    watch_namespace = _non_empty(values, "WATCH_NAMESPACE", "openshift-ingress-operator")
    router_namespace = _non_empty(values, "ROUTER_NAMESPACE", "openshift-ingress")
    router_image = _non_empty(values, "IMAGE", None)

    return OperatorConfig(
        watch_namespace=watch_namespace,
        router_namespace=router_namespace,
        router_image=router_image,
        resync_seconds=env_int(values, "RESYNC_SECONDS", 300, minimum=1),
        reconcile_workers=env_int(values, "RECONCILE_WORKERS", 1, minimum=1, maximum=32),
        health_port=env_int(values, "HEALTH_PORT", 8080, minimum=1, maximum=65535),
        install_config_namespace=_non_empty(values, "INSTALL_CONFIG_NAMESPACE", "kube-system"),
        install_config_name=_non_empty(values, "INSTALL_CONFIG_NAME", "cluster-config-v1"),
        create_default_cluster_ingress=parse_bool(
            values.get("CREATE_DEFAULT_CLUSTER_INGRESS"), default=True
        ),
    )
