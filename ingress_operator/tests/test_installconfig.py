from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException

from ingress_operator.src.config import ConfigError
from ingress_operator.src.installconfig import (
    InstallConfig,
    load_install_config,
    parse_install_config,
)

INSTALL_CONFIG_YAML = """
apiVersion: v1beta1
baseDomain: example.com
metadata:
  name: demo
platform:
  aws:
    region: us-east-1
"""


def test_parse_install_config() -> None:
    install_config = parse_install_config(INSTALL_CONFIG_YAML)

    assert install_config == InstallConfig(
        cluster_name="demo", base_domain="example.com", platform="aws"
    )
    assert install_config.default_ingress_domain == "apps.demo.example.com"


def test_parse_install_config_without_platform() -> None:
    install_config = parse_install_config("baseDomain: example.com\nmetadata:\n  name: demo\n")

    assert install_config.platform is None


@pytest.mark.parametrize(
    "raw",
    [
        "- a list",
        "baseDomain: example.com\n",
        "metadata:\n  name: demo\n",
        "baseDomain: [unterminated",
    ],
)
def test_parse_install_config_rejects_invalid_documents(raw: str) -> None:
    with pytest.raises(ConfigError):
        parse_install_config(raw)


def test_load_install_config_reads_configmap() -> None:
    core_api = MagicMock()
    core_api.read_namespaced_config_map.return_value = SimpleNamespace(
        data={"install-config": INSTALL_CONFIG_YAML}
    )

    install_config = load_install_config(core_api, namespace="kube-system", name="cluster-config-v1")

    assert install_config.cluster_name == "demo"
    core_api.read_namespaced_config_map.assert_called_once_with(
        name="cluster-config-v1", namespace="kube-system"
    )


def test_load_install_config_wraps_api_errors() -> None:
    core_api = MagicMock()
    core_api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="NotFound")

    with pytest.raises(ConfigError, match="status=404"):
        load_install_config(core_api, namespace="kube-system", name="cluster-config-v1")


def test_load_install_config_requires_key() -> None:
    core_api = MagicMock()
    core_api.read_namespaced_config_map.return_value = SimpleNamespace(data={})

    with pytest.raises(ConfigError, match="install-config"):
        load_install_config(core_api, namespace="kube-system", name="cluster-config-v1")
