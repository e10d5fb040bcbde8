from __future__ import annotations

from dataclasses import dataclass


class OperatorError(RuntimeError):
    """Base class for errors raised by the ingress operator."""


class BuildError(OperatorError):
    """Raised when a desired object cannot be materialized from a declaration."""


class PlatformError(OperatorError):
    """An API server call failed with a condition the operator does not absorb.

    Carries enough context (action, kind, namespace/name, HTTP status) to
    diagnose the failure from a single log line.
    """

    def __init__(
        self,
        action: str,
        kind: str,
        name: str,
        namespace: str | None = None,
        status: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.action = action
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.status = status
        self.reason = reason
        target = f"{namespace}/{name}" if namespace else name
        detail = f"status={status}" if status is not None else "no status"
        if reason:
            detail = f"{detail} reason={reason}"
        super().__init__(f"failed to {action} {kind} {target}: {detail}")


class AlreadyExistsError(PlatformError):
    """A create call found an object with the same identity (HTTP 409)."""


class NotFoundError(PlatformError):
    """The referenced object does not exist (HTTP 404)."""


class ScaffoldingError(OperatorError):
    """Shared router scaffolding could not be ensured; the pass was aborted."""


class ListError(OperatorError):
    """ClusterIngresses could not be listed; the pass was aborted."""


@dataclass(frozen=True)
class DeclarationFailure:
    name: str
    error: Exception

    def __str__(self) -> str:
        return f"clusteringress {self.name!r}: {self.error}"


class AggregateReconcileError(OperatorError):
    """One or more declarations failed during a reconciliation pass.

    ``failures`` keeps listing order so each failure stays attributable to
    the declaration that caused it.
    """

    def __init__(self, failures: list[DeclarationFailure], result: object = None) -> None:
        self.failures = list(failures)
        self.result = result
        if len(self.failures) == 1:
            message = str(self.failures[0])
        else:
            message = "[" + ", ".join(str(f) for f in self.failures) + "]"
        super().__init__(message)

    @property
    def names(self) -> list[str]:
        return [failure.name for failure in self.failures]
