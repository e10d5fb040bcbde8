from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client import ApiException

from ingress_operator.src.dispatcher import EventDispatcher, WatchSource, build_watch_sources
from ingress_operator.src.errors import (
    AggregateReconcileError,
    DeclarationFailure,
    ListError,
    PlatformError,
    ScaffoldingError,
)
from ingress_operator.src.reconciler import ReconcileResult


def _make_dispatcher(reconciler: Any = None, resync_seconds: float = 300) -> EventDispatcher:
    if reconciler is None:
        reconciler = MagicMock()
        reconciler.reconcile.return_value = ReconcileResult(ensured=("web",))
    return EventDispatcher(reconciler=reconciler, resync_seconds=resync_seconds)


def _daemon_set_source(list_fn: Any) -> WatchSource:
    return WatchSource(kind="daemonset", list_fn=list_fn, kwargs={"namespace": "openshift-ingress"})


def _listing(resource_version: str) -> SimpleNamespace:
    return SimpleNamespace(metadata=SimpleNamespace(resource_version=resource_version), items=[])


# ---------------------------------------------------------------------------
# Trigger queue
# ---------------------------------------------------------------------------


def test_notify_coalesces_while_a_pass_is_queued() -> None:
    dispatcher = _make_dispatcher()

    assert dispatcher.notify("clusteringress", "a") is True
    assert dispatcher.notify("clusteringress", "b") is False
    assert dispatcher.notify("daemonset", "router-a") is False

    assert dispatcher._next_trigger(threading.Event()) == ("clusteringress", "a")


def test_next_trigger_falls_back_to_resync() -> None:
    dispatcher = _make_dispatcher(resync_seconds=0.05)

    assert dispatcher._next_trigger(threading.Event()) == ("resync", "")


def test_next_trigger_returns_none_on_stop() -> None:
    dispatcher = _make_dispatcher()
    stop = threading.Event()
    stop.set()

    assert dispatcher._next_trigger(stop) is None


# ---------------------------------------------------------------------------
# Pass execution
# ---------------------------------------------------------------------------


def test_run_once_success_marks_ready() -> None:
    dispatcher = _make_dispatcher()

    assert dispatcher.run_once() is True
    assert dispatcher.ready.is_set()


def test_run_once_logs_each_declaration_failure(caplog: pytest.LogCaptureFixture) -> None:
    reconciler = MagicMock()
    reconciler.reconcile.side_effect = AggregateReconcileError(
        [
            DeclarationFailure("a", PlatformError("create", "DaemonSet", "router-a")),
            DeclarationFailure("c", PlatformError("delete", "DaemonSet", "router-c")),
        ]
    )
    dispatcher = _make_dispatcher(reconciler)

    with caplog.at_level(logging.ERROR):
        assert dispatcher.run_once() is False

    assert dispatcher.ready.is_set()
    messages = [r.getMessage() for r in caplog.records]
    assert any("clusteringress a" in m and "router-a" in m for m in messages)
    assert any("clusteringress c" in m for m in messages)


@pytest.mark.parametrize(
    "error",
    [ScaffoldingError("no namespace"), ListError("no listing"), RuntimeError("bug")],
)
def test_run_once_survives_aborted_passes(error: Exception) -> None:
    reconciler = MagicMock()
    reconciler.reconcile.side_effect = error
    dispatcher = _make_dispatcher(reconciler)

    assert dispatcher.run_once() is False
    assert not dispatcher.ready.is_set()


def test_run_forever_runs_startup_pass_and_stops() -> None:
    stop = threading.Event()
    reconciler = MagicMock()

    def reconcile() -> ReconcileResult:
        stop.set()
        return ReconcileResult()

    reconciler.reconcile.side_effect = reconcile
    dispatcher = _make_dispatcher(reconciler)

    dispatcher.run_forever(shutdown_event=stop)

    reconciler.reconcile.assert_called_once()
    assert not dispatcher.ready.is_set()


def test_run_forever_keeps_going_after_failed_pass() -> None:
    stop = threading.Event()
    reconciler = MagicMock()
    outcomes: list[Any] = [ListError("transient"), ReconcileResult()]

    def reconcile() -> ReconcileResult:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        stop.set()
        return outcome

    reconciler.reconcile.side_effect = reconcile
    dispatcher = _make_dispatcher(reconciler, resync_seconds=0.05)

    dispatcher.run_forever(shutdown_event=stop)

    assert reconciler.reconcile.call_count == 2


# ---------------------------------------------------------------------------
# Watch sources
# ---------------------------------------------------------------------------


def test_watch_source_notifies_for_events_and_resumes_from_list_version() -> None:
    dispatcher = _make_dispatcher()
    stop = threading.Event()
    list_fn = MagicMock(return_value=_listing("5"))
    stream_calls: list[dict[str, Any]] = []

    def stream(fn: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        stream_calls.append(kwargs)
        yield {
            "type": "DELETED",
            "object": SimpleNamespace(
                metadata=SimpleNamespace(name="router-web", resource_version="6")
            ),
        }
        stop.set()

    with patch("ingress_operator.src.dispatcher.watch.Watch") as mock_watch:
        mock_watch.return_value.stream.side_effect = stream
        dispatcher._watch_source(_daemon_set_source(list_fn), stop)

    assert stream_calls[0]["resource_version"] == "5"
    assert stream_calls[0]["namespace"] == "openshift-ingress"
    assert dispatcher._next_trigger(threading.Event()) == ("daemonset", "router-web")


def test_watch_source_reads_custom_object_dict_events() -> None:
    dispatcher = _make_dispatcher()
    stop = threading.Event()
    list_fn = MagicMock(return_value={"metadata": {"resourceVersion": "9"}, "items": []})

    def stream(fn: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        yield {"type": "MODIFIED", "object": {"metadata": {"name": "web", "resourceVersion": "10"}}}
        stop.set()

    with patch("ingress_operator.src.dispatcher.watch.Watch") as mock_watch:
        mock_watch.return_value.stream.side_effect = stream
        dispatcher._watch_source(WatchSource(kind="clusteringress", list_fn=list_fn), stop)

    assert dispatcher._next_trigger(threading.Event()) == ("clusteringress", "web")


def test_watch_source_relists_after_gone() -> None:
    dispatcher = _make_dispatcher()
    stop = threading.Event()
    list_fn = MagicMock(side_effect=[_listing("5"), _listing("50")])
    stream_calls: list[dict[str, Any]] = []

    def stream(fn: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        stream_calls.append(kwargs)
        if len(stream_calls) == 1:
            raise ApiException(status=410, reason="Gone")
        stop.set()
        yield from ()

    with patch("ingress_operator.src.dispatcher.watch.Watch") as mock_watch:
        mock_watch.return_value.stream.side_effect = stream
        dispatcher._watch_source(_daemon_set_source(list_fn), stop)

    assert list_fn.call_count == 2
    assert stream_calls[1]["resource_version"] == "50"
    assert dispatcher._next_trigger(threading.Event()) == ("daemonset", "")


def test_watch_source_stops_on_forbidden() -> None:
    dispatcher = _make_dispatcher()
    stop = threading.Event()
    list_fn = MagicMock(return_value=_listing("5"))

    with patch("ingress_operator.src.dispatcher.watch.Watch") as mock_watch:
        mock_watch.return_value.stream.side_effect = ApiException(status=403, reason="Forbidden")
        dispatcher._watch_source(_daemon_set_source(list_fn), stop)

    assert not stop.is_set()
    list_fn.assert_called_once()
    mock_watch.return_value.stop.assert_called_once()


def test_request_stop_interrupts_active_watchers() -> None:
    dispatcher = _make_dispatcher()
    watcher = MagicMock()
    dispatcher._active_watchers.add(watcher)

    dispatcher.request_stop()

    watcher.stop.assert_called_once()
    assert dispatcher._should_stop(threading.Event())


def test_build_watch_sources_covers_ingresses_and_router_objects() -> None:
    clients = SimpleNamespace(custom=MagicMock(), apps=MagicMock(), core=MagicMock())

    sources = build_watch_sources(clients, "ops", "routers")  # type: ignore[arg-type]

    assert [s.kind for s in sources] == ["clusteringress", "daemonset", "service"]
    assert sources[0].list_fn is clients.custom.list_namespaced_custom_object
    assert sources[0].kwargs["namespace"] == "ops"
    assert sources[1].kwargs == {"namespace": "routers"}
    assert sources[2].list_fn is clients.core.list_namespaced_service
