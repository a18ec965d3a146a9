from lagom import Container, Singleton

from anonymize_requests.config import AnonymizeConfig, DispatchMode
from anonymize_requests.guard import UniquenessGuard
from anonymize_requests.owners import OwnerRegistry
from anonymize_requests.services import (
    AnonymizeRequestService,
    DispatchCoordinator,
    InMemoryScheduler,
    LogMailer,
    Mailer,
    ServiceNotifier,
)
from anonymize_requests.state_machine import RequestStateMachine
from anonymize_requests.store import InMemoryRequestStore, RequestStore


def build_container(config: AnonymizeConfig | None = None) -> Container:
    container = Container()

    container[AnonymizeConfig] = config if config is not None else AnonymizeConfig()

    # Collaborators
    container[RequestStore] = Singleton(InMemoryRequestStore)
    container[Mailer] = Singleton(LogMailer)
    container[InMemoryScheduler] = Singleton(InMemoryScheduler)
    container[OwnerRegistry] = Singleton(lambda c: OwnerRegistry(c[AnonymizeConfig]))

    # Services
    container[ServiceNotifier] = Singleton(lambda c: ServiceNotifier(c[AnonymizeConfig]))
    container[RequestStateMachine] = Singleton(lambda c: RequestStateMachine(c[RequestStore]))
    container[UniquenessGuard] = Singleton(UniquenessGuard)
    container[DispatchCoordinator] = Singleton(
        lambda c: DispatchCoordinator(
            c[AnonymizeConfig],
            c[RequestStateMachine],
            c[OwnerRegistry],
            c[ServiceNotifier],
            scheduler=(c[InMemoryScheduler] if c[AnonymizeConfig].dispatch_mode is DispatchMode.ASYNC else None),
        ),
    )
    container[AnonymizeRequestService] = Singleton(
        lambda c: AnonymizeRequestService(
            c[AnonymizeConfig],
            c[RequestStore],
            c[RequestStateMachine],
            c[UniquenessGuard],
            c[OwnerRegistry],
            c[DispatchCoordinator],
            c[Mailer],
        ),
    )
    return container


container = build_container()
