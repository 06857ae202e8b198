"""Process-wide service wiring: store, transport, presenter and orchestrator."""

from __future__ import annotations

import dataclasses
from typing import Optional

from officers_log.callback_flow.orchestrator import CallbackOrchestrator
from officers_log.graph.log_sorting import ArcCollapseState
from officers_log.mission import MissionTracker
from officers_log.presentation import Presenter
from officers_log.store.base import DocumentStore
from officers_log.transport import Transport


@dataclasses.dataclass
class Services:
    store: DocumentStore
    transport: Transport
    presenter: Presenter
    orchestrator: CallbackOrchestrator
    mission: MissionTracker
    collapse: ArcCollapseState


def build_services(store: DocumentStore, transport: Transport, presenter: Presenter,
                   timeout: Optional[float] = None) -> Services:
    mission = MissionTracker(store)
    orchestrator = CallbackOrchestrator(store, transport, presenter, mission=mission, timeout=timeout)
    return Services(
        store=store,
        transport=transport,
        presenter=presenter,
        orchestrator=orchestrator,
        mission=mission,
        collapse=ArcCollapseState(),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Lazily build the SQL + WebSocket wiring used by the running server."""
    global _services
    if _services is None:
        from officers_log.app import manager
        from officers_log.presentation import WebSocketPresenter
        from officers_log.store.sql import SqlDocumentStore
        from officers_log.transport import WebSocketTransport

        _services = build_services(
            SqlDocumentStore(),
            WebSocketTransport(manager),
            WebSocketPresenter(manager),
        )
    return _services


def set_services(services: Optional[Services]) -> None:
    """Swap the process-wide services (tests install in-memory wiring here)."""
    global _services
    _services = services
