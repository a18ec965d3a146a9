from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import parse_qs

import httpx
import pytest

from anonymize_requests.config import AnonymizeConfig, DispatchMode, ServiceConfig
from anonymize_requests.guard import UniquenessGuard
from anonymize_requests.models import OwnerRef
from anonymize_requests.owners import OwnerRegistry
from anonymize_requests.services import (
    AnonymizeRequestService,
    DispatchCoordinator,
    InMemoryScheduler,
    ServiceNotifier,
)
from anonymize_requests.state_machine import RequestStateMachine
from anonymize_requests.store import InMemoryRequestStore


class FakeOwner:
    def __init__(self, identifier: str, *, fail: bool = False):
        self.identifier = identifier
        self.fail = fail
        self.anonymized = 0

    def external_identifier(self) -> str:
        return self.identifier

    def anonymize_locally(self) -> bool:
        if self.fail:
            raise RuntimeError("local anonymization failed")
        self.anonymized += 1
        self.identifier = f"anonymized-{self.anonymized}"
        return True


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[str] = []

    def notify_requester(self, request_id: str) -> None:
        self.sent.append(request_id)


class RecordingTransport:
    """Answers every POST with the status configured for its host."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_by_host: dict[str, int] = {}
        self.body = "ok"
        self.on_request: Callable[[httpx.Request], None] | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        return httpx.Response(self.status_by_host.get(request.url.host, 200), text=self.body)

    def form(self, index: int) -> dict[str, str]:
        parsed = parse_qs(self.requests[index].content.decode())
        return {key: values[0] for key, values in parsed.items()}

    def hosts(self) -> list[str]:
        return [request.url.host for request in self.requests]


def make_config(**overrides) -> AnonymizeConfig:
    values = dict(
        token="global-secret",
        services={
            "crm": ServiceConfig(host="https://crm.example.com"),
            "billing": ServiceConfig(host="https://billing.example.com", token="billing-secret"),
        },
        notification_path="/api/anonymize",
        dispatch_mode=DispatchMode.SYNC,
    )
    values.update(overrides)
    return AnonymizeConfig(**values)


@dataclass
class Workflow:
    config: AnonymizeConfig
    store: InMemoryRequestStore
    machine: RequestStateMachine
    registry: OwnerRegistry
    notifier: ServiceNotifier
    coordinator: DispatchCoordinator
    service: AnonymizeRequestService
    transport: RecordingTransport
    mailer: RecordingMailer
    scheduler: InMemoryScheduler | None
    owners: dict[str, FakeOwner] = field(default_factory=dict)

    def add_owner(self, owner_id: str, identifier: str | None = None, **kwargs) -> OwnerRef:
        self.owners[owner_id] = FakeOwner(identifier or f"{owner_id}@example.com", **kwargs)
        return OwnerRef(type="User", id=owner_id)


def build_workflow(config: AnonymizeConfig | None = None, store: InMemoryRequestStore | None = None) -> Workflow:
    config = config or make_config()
    store = store or InMemoryRequestStore()
    transport = RecordingTransport()
    notifier = ServiceNotifier(config, client=httpx.AsyncClient(transport=httpx.MockTransport(transport)))
    machine = RequestStateMachine(store)
    registry = OwnerRegistry(config)
    scheduler = InMemoryScheduler() if config.dispatch_mode is DispatchMode.ASYNC else None
    coordinator = DispatchCoordinator(config, machine, registry, notifier, scheduler=scheduler)
    mailer = RecordingMailer()
    service = AnonymizeRequestService(config, store, machine, UniquenessGuard(), registry, coordinator, mailer)
    workflow = Workflow(config, store, machine, registry, notifier, coordinator, service, transport, mailer, scheduler)
    registry.register("User", workflow.owners.get)
    return workflow


@pytest.fixture
def workflow() -> Workflow:
    return build_workflow()


@pytest.fixture
def async_workflow() -> Workflow:
    return build_workflow(make_config(dispatch_mode=DispatchMode.ASYNC))
