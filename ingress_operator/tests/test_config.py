from __future__ import annotations

import pytest

from ingress_operator.src.config import ConfigError, env_int, load_config, parse_bool


def test_load_config_defaults() -> None:
    config = load_config({"IMAGE": "router:v1"})

    assert config.watch_namespace == "openshift-ingress-operator"
    assert config.router_namespace == "openshift-ingress"
    assert config.router_image == "router:v1"
    assert config.resync_seconds == 300
    assert config.reconcile_workers == 1
    assert config.health_port == 8080
    assert config.install_config_namespace == "kube-system"
    assert config.install_config_name == "cluster-config-v1"
    assert config.create_default_cluster_ingress is True


def test_load_config_reads_overrides() -> None:
    config = load_config(
        {
            "IMAGE": "router:v2",
            "WATCH_NAMESPACE": "ops",
            "ROUTER_NAMESPACE": "routers",
            "RESYNC_SECONDS": "30",
            "RECONCILE_WORKERS": "4",
            "HEALTH_PORT": "9090",
            "CREATE_DEFAULT_CLUSTER_INGRESS": "false",
        }
    )

    assert config.watch_namespace == "ops"
    assert config.router_namespace == "routers"
    assert config.resync_seconds == 30
    assert config.reconcile_workers == 4
    assert config.health_port == 9090
    assert config.create_default_cluster_ingress is False


def test_load_config_requires_image() -> None:
    with pytest.raises(ConfigError, match="IMAGE"):
        load_config({})


def test_load_config_rejects_blank_namespace() -> None:
    with pytest.raises(ConfigError, match="WATCH_NAMESPACE"):
        load_config({"IMAGE": "router:v1", "WATCH_NAMESPACE": "  "})


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("RESYNC_SECONDS", "0"),
        ("RECONCILE_WORKERS", "33"),
        ("HEALTH_PORT", "70000"),
        ("HEALTH_PORT", "abc"),
    ],
)
def test_load_config_rejects_out_of_range_integers(name: str, value: str) -> None:
    with pytest.raises(ConfigError, match=name):
        load_config({"IMAGE": "router:v1", name: value})


def test_env_int_uses_default_when_unset() -> None:
    assert env_int({}, "X", 5, minimum=1) == 5


@pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
def test_parse_bool_truthy(value: str) -> None:
    assert parse_bool(value) is True


@pytest.mark.parametrize("value", ["0", "false", "no", ""])
def test_parse_bool_falsy(value: str) -> None:
    assert parse_bool(value, default=True) is False


def test_parse_bool_default_when_unset() -> None:
    assert parse_bool(None, default=True) is True
