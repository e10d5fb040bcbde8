from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ingress_operator.src.errors import BuildError

CLUSTER_INGRESS_GROUP = "ingress.openshift.io"
CLUSTER_INGRESS_VERSION = "v1alpha1"
CLUSTER_INGRESS_PLURAL = "clusteringresses"
CLUSTER_INGRESS_KIND = "ClusterIngress"

# Applied to every ClusterIngress before infrastructure is created for it so
# the operator always observes the deleting state.
CLUSTER_INGRESS_FINALIZER = "ingress.openshift.io/default-cluster-ingress"


class HighAvailabilityType(str, Enum):
    """How a ClusterIngress's routers are made reachable.

    ``CLOUD`` asks for a cloud load balancer in front of the routers.
    ``USER_DEFINED`` leaves exposure to the cluster administrator.
    """

    CLOUD = "Cloud"
    USER_DEFINED = "UserDefined"


def _match_labels(raw: Any, field_name: str) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise BuildError(f"spec.{field_name} must be an object")
    labels = raw.get("matchLabels") or {}
    if not isinstance(labels, dict):
        raise BuildError(f"spec.{field_name}.matchLabels must be a map")
    return {str(k): str(v) for k, v in labels.items()}


def _optional_str(raw: Any, field_name: str) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise BuildError(f"spec.{field_name} must be a string")
    return raw or None


@dataclass(frozen=True)
class ClusterIngressSpec:
    ingress_domain: str | None = None
    node_selector: dict[str, str] = field(default_factory=dict)
    default_certificate_secret: str | None = None
    namespace_selector: dict[str, str] = field(default_factory=dict)
    route_selector: dict[str, str] = field(default_factory=dict)
    high_availability: HighAvailabilityType | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> ClusterIngressSpec:
        """Parse ``spec`` of a ClusterIngress, raising :class:`BuildError` on malformed input."""
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise BuildError("spec must be an object")

        node_placement = raw.get("nodePlacement")
        if node_placement is not None and not isinstance(node_placement, dict):
            raise BuildError("spec.nodePlacement must be an object")
        node_selector = _match_labels(
            (node_placement or {}).get("nodeSelector"), "nodePlacement.nodeSelector"
        )

        high_availability = None
        ha = raw.get("highAvailability")
        if ha is not None:
            if not isinstance(ha, dict):
                raise BuildError("spec.highAvailability must be an object")
            ha_type = ha.get("type")
            try:
                high_availability = HighAvailabilityType(ha_type)
            except ValueError as exc:
                raise BuildError(
                    f"spec.highAvailability.type {ha_type!r} is not one of "
                    f"{[t.value for t in HighAvailabilityType]}"
                ) from exc

        return cls(
            ingress_domain=_optional_str(raw.get("ingressDomain"), "ingressDomain"),
            node_selector=node_selector,
            default_certificate_secret=_optional_str(
                raw.get("defaultCertificateSecret"), "defaultCertificateSecret"
            ),
            namespace_selector=_match_labels(raw.get("namespaceSelector"), "namespaceSelector"),
            route_selector=_match_labels(raw.get("routeSelector"), "routeSelector"),
            high_availability=high_availability,
        )


@dataclass
class ClusterIngress:
    """A ClusterIngress custom resource as observed from the API server.

    ``body`` keeps the full object so updates round-trip fields the operator
    does not model.  The spec is parsed lazily by :attr:`spec` because a
    malformed spec must fail only the steps that need it, not the listing.
    """

    name: str
    namespace: str
    uid: str | None = None
    generation: int | None = None
    resource_version: str | None = None
    deletion_timestamp: str | None = None
    finalizers: list[str] = field(default_factory=list)
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> ClusterIngress:
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
            resource_version=metadata.get("resourceVersion"),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            finalizers=list(metadata.get("finalizers") or []),
            body=copy.deepcopy(obj),
        )

    @property
    def spec(self) -> ClusterIngressSpec:
        return ClusterIngressSpec.from_dict(self.body.get("spec"))

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, token: str = CLUSTER_INGRESS_FINALIZER) -> bool:
        return token in self.finalizers

    def add_finalizer(self, token: str = CLUSTER_INGRESS_FINALIZER) -> bool:
        """Add *token* if absent; return whether the finalizer set changed."""
        if token in self.finalizers:
            return False
        self.finalizers.append(token)
        return True

    def remove_finalizer(self, token: str = CLUSTER_INGRESS_FINALIZER) -> bool:
        """Remove every occurrence of *token*; return whether anything was removed."""
        remaining = [f for f in self.finalizers if f != token]
        changed = len(remaining) != len(self.finalizers)
        self.finalizers = remaining
        return changed

    def to_dict(self) -> dict[str, Any]:
        """Return the object body with the current finalizers and resourceVersion."""
        body = copy.deepcopy(self.body)
        body.setdefault("apiVersion", f"{CLUSTER_INGRESS_GROUP}/{CLUSTER_INGRESS_VERSION}")
        body.setdefault("kind", CLUSTER_INGRESS_KIND)
        metadata = body.setdefault("metadata", {})
        metadata["name"] = self.name
        metadata["namespace"] = self.namespace
        metadata["finalizers"] = list(self.finalizers)
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        return body
