from __future__ import annotations

from typing import Any, NamedTuple

from kubernetes.client import (
    RbacV1Subject,
    V1ClusterRole,
    V1ClusterRoleBinding,
    V1Container,
    V1ContainerPort,
    V1DaemonSet,
    V1DaemonSetSpec,
    V1EnvVar,
    V1HTTPGetAction,
    V1LabelSelector,
    V1Namespace,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
    V1PolicyRule,
    V1Probe,
    V1RoleRef,
    V1SecretVolumeSource,
    V1Service,
    V1ServiceAccount,
    V1ServicePort,
    V1ServiceSpec,
    V1Volume,
    V1VolumeMount,
)

from ingress_operator.src.errors import BuildError
from ingress_operator.src.installconfig import InstallConfig
from ingress_operator.src.models import (
    CLUSTER_INGRESS_FINALIZER,
    CLUSTER_INGRESS_GROUP,
    CLUSTER_INGRESS_KIND,
    CLUSTER_INGRESS_VERSION,
    ClusterIngress,
    HighAvailabilityType,
)

ROUTER_CLUSTER_ROLE_NAME = "openshift-ingress-router"
ROUTER_CLUSTER_ROLE_BINDING_NAME = "openshift-ingress-router"
ROUTER_SERVICE_ACCOUNT_NAME = "router"
DEFAULT_CLUSTER_INGRESS_NAME = "default"

ROUTER_NAME_PREFIX = "router-"
CLUSTER_INGRESS_LABEL = "ingress.openshift.io/clusteringress"
ROUTER_LABEL = "router"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "ingress-operator"

STATS_PORT = 1936
DEFAULT_CERTIFICATE_DIR = "/etc/pki/tls/private"


class Scaffolding(NamedTuple):
    """Shared router prerequisites in the order they must be created."""

    cluster_role: V1ClusterRole
    namespace: V1Namespace
    service_account: V1ServiceAccount
    cluster_role_binding: V1ClusterRoleBinding


def router_name(ci: ClusterIngress) -> str:
    """Return the deterministic DaemonSet/Service name for a ClusterIngress."""
    if not ci.name:
        raise BuildError("clusteringress has no name")
    return f"{ROUTER_NAME_PREFIX}{ci.name}"


def _selector_string(labels: dict[str, str]) -> str:
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


class ManifestFactory:
    """Builds the desired state of every object the operator manages.

    All methods are pure: the same inputs always yield equal objects, which
    lets the reconciler recompute identities on every pass instead of
    remembering them.
    """

    def __init__(self, router_namespace: str, router_image: str) -> None:
        self.router_namespace = router_namespace
        self.router_image = router_image

    def router_cluster_role(self) -> V1ClusterRole:
        return V1ClusterRole(
            api_version="rbac.authorization.k8s.io/v1",
            kind="ClusterRole",
            metadata=V1ObjectMeta(
                name=ROUTER_CLUSTER_ROLE_NAME,
                labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            ),
            rules=[
                V1PolicyRule(
                    api_groups=[""],
                    resources=["endpoints", "namespaces", "services"],
                    verbs=["list", "watch"],
                ),
                V1PolicyRule(
                    api_groups=["authentication.k8s.io"],
                    resources=["tokenreviews"],
                    verbs=["create"],
                ),
                V1PolicyRule(
                    api_groups=["authorization.k8s.io"],
                    resources=["subjectaccessreviews"],
                    verbs=["create"],
                ),
                V1PolicyRule(
                    api_groups=["route.openshift.io"],
                    resources=["routes"],
                    verbs=["list", "watch"],
                ),
                V1PolicyRule(
                    api_groups=["route.openshift.io"],
                    resources=["routes/status"],
                    verbs=["update"],
                ),
            ],
        )

    def router_namespace_object(self) -> V1Namespace:
        return V1Namespace(
            api_version="v1",
            kind="Namespace",
            metadata=V1ObjectMeta(
                name=self.router_namespace,
                labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            ),
        )

    def router_service_account(self) -> V1ServiceAccount:
        return V1ServiceAccount(
            api_version="v1",
            kind="ServiceAccount",
            metadata=V1ObjectMeta(
                name=ROUTER_SERVICE_ACCOUNT_NAME,
                namespace=self.router_namespace,
            ),
        )

    def router_cluster_role_binding(self) -> V1ClusterRoleBinding:
        return V1ClusterRoleBinding(
            api_version="rbac.authorization.k8s.io/v1",
            kind="ClusterRoleBinding",
            metadata=V1ObjectMeta(
                name=ROUTER_CLUSTER_ROLE_BINDING_NAME,
                labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            ),
            role_ref=V1RoleRef(
                api_group="rbac.authorization.k8s.io",
                kind="ClusterRole",
                name=ROUTER_CLUSTER_ROLE_NAME,
            ),
            subjects=[
                RbacV1Subject(
                    kind="ServiceAccount",
                    name=ROUTER_SERVICE_ACCOUNT_NAME,
                    namespace=self.router_namespace,
                )
            ],
        )

    def build_scaffolding(self) -> Scaffolding:
        return Scaffolding(
            cluster_role=self.router_cluster_role(),
            namespace=self.router_namespace_object(),
            service_account=self.router_service_account(),
            cluster_role_binding=self.router_cluster_role_binding(),
        )

    def _router_labels(self, ci: ClusterIngress) -> dict[str, str]:
        return {
            ROUTER_LABEL: router_name(ci),
            CLUSTER_INGRESS_LABEL: ci.name,
        }

    def router_daemon_set(self, ci: ClusterIngress) -> V1DaemonSet:
        """Return the router DaemonSet for *ci*.

        Raises :class:`BuildError` when the ClusterIngress spec is malformed.
        """
        name = router_name(ci)
        spec = ci.spec
        labels = self._router_labels(ci)

        env = [
            V1EnvVar(name="ROUTER_SERVICE_NAMESPACE", value=self.router_namespace),
            V1EnvVar(name="ROUTER_SERVICE_NAME", value=ci.name),
            V1EnvVar(name="STATS_PORT", value=str(STATS_PORT)),
        ]
        if spec.ingress_domain:
            env.append(V1EnvVar(name="ROUTER_CANONICAL_HOSTNAME", value=spec.ingress_domain))
        if spec.namespace_selector:
            env.append(
                V1EnvVar(name="NAMESPACE_LABELS", value=_selector_string(spec.namespace_selector))
            )
        if spec.route_selector:
            env.append(V1EnvVar(name="ROUTE_LABELS", value=_selector_string(spec.route_selector)))

        volumes: list[V1Volume] = []
        volume_mounts: list[V1VolumeMount] = []
        if spec.default_certificate_secret:
            env.append(
                V1EnvVar(
                    name="DEFAULT_CERTIFICATE_PATH",
                    value=f"{DEFAULT_CERTIFICATE_DIR}/tls.crt",
                )
            )
            volumes.append(
                V1Volume(
                    name="default-certificate",
                    secret=V1SecretVolumeSource(secret_name=spec.default_certificate_secret),
                )
            )
            volume_mounts.append(
                V1VolumeMount(
                    name="default-certificate",
                    mount_path=DEFAULT_CERTIFICATE_DIR,
                    read_only=True,
                )
            )

        probe_action = V1HTTPGetAction(path="/healthz", port=STATS_PORT, host="localhost")
        container = V1Container(
            name="router",
            image=self.router_image,
            env=env,
            ports=[
                V1ContainerPort(name="http", container_port=80, protocol="TCP"),
                V1ContainerPort(name="https", container_port=443, protocol="TCP"),
                V1ContainerPort(name="stats", container_port=STATS_PORT, protocol="TCP"),
            ],
            liveness_probe=V1Probe(http_get=probe_action, initial_delay_seconds=10),
            readiness_probe=V1Probe(http_get=probe_action, initial_delay_seconds=10),
            volume_mounts=volume_mounts or None,
        )

        return V1DaemonSet(
            api_version="apps/v1",
            kind="DaemonSet",
            metadata=V1ObjectMeta(
                name=name,
                namespace=self.router_namespace,
                labels={**labels, MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            ),
            spec=V1DaemonSetSpec(
                selector=V1LabelSelector(match_labels={ROUTER_LABEL: name}),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels),
                    spec=V1PodSpec(
                        service_account_name=ROUTER_SERVICE_ACCOUNT_NAME,
                        host_network=True,
                        dns_policy="ClusterFirstWithHostNet",
                        node_selector=dict(spec.node_selector) or None,
                        containers=[container],
                        volumes=volumes or None,
                    ),
                ),
            ),
        )

    def router_daemon_set_identity(self, ci: ClusterIngress) -> V1DaemonSet:
        """Return a minimal DaemonSet derived from nothing but the name of *ci*.

        Deletion needs nothing else, so teardown still works for a
        ClusterIngress whose spec no longer parses.
        """
        name = router_name(ci)
        return V1DaemonSet(
            api_version="apps/v1",
            kind="DaemonSet",
            metadata=V1ObjectMeta(name=name, namespace=self.router_namespace),
            spec=V1DaemonSetSpec(
                selector=V1LabelSelector(match_labels={ROUTER_LABEL: name}),
                template=V1PodTemplateSpec(),
            ),
        )

    def router_service_cloud(self, ci: ClusterIngress) -> V1Service:
        """Return the LoadBalancer Service exposing the routers of *ci*.

        The caller attaches the owner reference; the factory cannot know the
        DaemonSet's server-assigned uid.
        """
        name = router_name(ci)
        return V1Service(
            api_version="v1",
            kind="Service",
            metadata=V1ObjectMeta(
                name=name,
                namespace=self.router_namespace,
                labels={**self._router_labels(ci), MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            ),
            spec=V1ServiceSpec(
                type="LoadBalancer",
                selector={ROUTER_LABEL: name},
                ports=[
                    V1ServicePort(name="http", port=80, target_port="http", protocol="TCP"),
                    V1ServicePort(name="https", port=443, target_port="https", protocol="TCP"),
                ],
            ),
        )

    def default_cluster_ingress(
        self, install_config: InstallConfig, namespace: str
    ) -> dict[str, Any]:
        """Return the ``default`` ClusterIngress body derived from the install config."""
        ha_type = (
            HighAvailabilityType.CLOUD
            if install_config.platform == "aws"
            else HighAvailabilityType.USER_DEFINED
        )
        return {
            "apiVersion": f"{CLUSTER_INGRESS_GROUP}/{CLUSTER_INGRESS_VERSION}",
            "kind": CLUSTER_INGRESS_KIND,
            "metadata": {
                "name": DEFAULT_CLUSTER_INGRESS_NAME,
                "namespace": namespace,
                "finalizers": [CLUSTER_INGRESS_FINALIZER],
            },
            "spec": {
                "ingressDomain": install_config.default_ingress_domain,
                "highAvailability": {"type": ha_type.value},
            },
        }
