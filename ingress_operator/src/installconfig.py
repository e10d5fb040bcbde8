from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import yaml
from kubernetes.client import ApiException, CoreV1Api

from ingress_operator.src.config import ConfigError

LOGGER = logging.getLogger(__name__)

INSTALL_CONFIG_KEY = "install-config"


@dataclass(frozen=True)
class InstallConfig:
    """The subset of the cluster installer's configuration the operator needs."""

    cluster_name: str
    base_domain: str
    platform: str | None = None

    @property
    def default_ingress_domain(self) -> str:
        return f"apps.{self.cluster_name}.{self.base_domain}"


def parse_install_config(raw: str) -> InstallConfig:
    """Parse the installer's YAML document into an :class:`InstallConfig`."""
    try:
        document: Any = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"install config is not valid YAML: {exc}") from exc
    if not isinstance(document, dict):
        raise ConfigError("install config must be a YAML mapping")

    metadata = document.get("metadata") or {}
    cluster_name = metadata.get("name") if isinstance(metadata, dict) else None
    base_domain = document.get("baseDomain")
    if not cluster_name or not isinstance(cluster_name, str):
        raise ConfigError("install config is missing metadata.name")
    if not base_domain or not isinstance(base_domain, str):
        raise ConfigError("install config is missing baseDomain")

    platform = None
    platforms = document.get("platform")
    if isinstance(platforms, dict) and platforms:
        # Exactly one platform key is set by the installer.
        platform = sorted(platforms)[0]

    return InstallConfig(cluster_name=cluster_name, base_domain=base_domain, platform=platform)


def load_install_config(core_api: CoreV1Api, namespace: str, name: str) -> InstallConfig:
    """Read and parse the installer ConfigMap ``namespace/name``."""
    try:
        config_map = core_api.read_namespaced_config_map(name=name, namespace=namespace)
    except ApiException as exc:
        raise ConfigError(
            f"couldn't read install config {namespace}/{name}: status={exc.status}"
        ) from exc

    data = getattr(config_map, "data", None) or {}
    raw = data.get(INSTALL_CONFIG_KEY)
    if not raw:
        raise ConfigError(f"configmap {namespace}/{name} has no {INSTALL_CONFIG_KEY!r} key")

    install_config = parse_install_config(raw)
    LOGGER.info(
        "Loaded install config for cluster %s (baseDomain=%s, platform=%s)",
        install_config.cluster_name,
        install_config.base_domain,
        install_config.platform,
    )
    return install_config
