from __future__ import annotations

from structlog import get_logger

from anonymize_requests.config import AnonymizeConfig, DispatchMode
from anonymize_requests.guard import UniquenessGuard
from anonymize_requests.models import AnonymizeRequest, OwnerRef
from anonymize_requests.owners import OwnerRegistry
from anonymize_requests.services.dispatch import DispatchCoordinator
from anonymize_requests.services.mailer import Mailer
from anonymize_requests.services.notifier import encrypted_params
from anonymize_requests.state_machine import Event, RequestStateMachine
from anonymize_requests.store import RequestStore

logger = get_logger(__name__)


class AnonymizeRequestService:
    def __init__(
        self,
        config: AnonymizeConfig,
        store: RequestStore,
        machine: RequestStateMachine,
        guard: UniquenessGuard,
        registry: OwnerRegistry,
        coordinator: DispatchCoordinator,
        mailer: Mailer,
    ):
        self.config = config
        self.store = store
        self.machine = machine
        self.guard = guard
        self.registry = registry
        self.coordinator = coordinator
        self.mailer = mailer

    def create(self, owner: OwnerRef, *, requested_by: str | None = None) -> AnonymizeRequest:
        candidate = AnonymizeRequest(owner=owner, requested_by=requested_by)
        log = logger.bind(request_id=candidate.id, owner_type=owner.type, owner_id=owner.id)

        # raises OwnerError for owners the registry cannot load
        self.registry.resolve(owner)

        with self.store.transaction() as tx:
            self.guard.check(tx, candidate)
            tx.insert(candidate)

        log.info("anonymize_request_created", requested_by=requested_by)
        self._notify_requester(candidate)
        return candidate

    def _notify_requester(self, request: AnonymizeRequest) -> None:
        if request.requested_by is not None or self.config.dispatch_mode is not DispatchMode.SYNC:
            return
        self.mailer.notify_requester(request.id)

    def get(self, request_id: str) -> AnonymizeRequest:
        return self.store.get(request_id)

    def for_owner(self, owner: OwnerRef) -> list[AnonymizeRequest]:
        return self.store.for_owner(owner)

    async def fire(self, request_id: str, event: Event) -> AnonymizeRequest:
        request, effects = self.machine.apply(request_id, event)
        await self.coordinator.run_effects(request, effects)
        return self.store.get(request_id)

    async def approve(self, request_id: str) -> AnonymizeRequest:
        return await self.fire(request_id, Event.APPROVE)

    async def cancel(self, request_id: str) -> AnonymizeRequest:
        return await self.fire(request_id, Event.CANCEL)

    async def deny(self, request_id: str) -> AnonymizeRequest:
        return await self.fire(request_id, Event.DENY)

    async def run(self, request_id: str) -> AnonymizeRequest:
        return await self.fire(request_id, Event.RUN)

    async def done(self, request_id: str) -> AnonymizeRequest:
        return await self.fire(request_id, Event.DONE)

    def encrypted_params_for_service(self, request: AnonymizeRequest, service_name: str) -> dict[str, str]:
        identifier = self.registry.resolve(request.owner).external_identifier()
        return encrypted_params(identifier, self.config.token_for(service_name))

    def my_encrypted_params(self, request: AnonymizeRequest) -> dict[str, str]:
        identifier = self.registry.resolve(request.owner).external_identifier()
        return encrypted_params(identifier, self.config.token)
