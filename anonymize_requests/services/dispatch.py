"""Post-commit effects of an anonymize request.

Approval notifies every configured service and then anonymizes the owner
locally. In sync mode the work is awaited inline by whoever fired the event;
in async mode each step becomes a ``JobDescriptor`` handed to the scheduler,
and a worker later executes it through ``DispatchCoordinator.perform``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol

from structlog import get_logger

from anonymize_requests.config import AnonymizeConfig, DispatchMode
from anonymize_requests.models import AnonymizeRequest, JobDescriptor
from anonymize_requests.owners import OwnerRegistry
from anonymize_requests.services.notifier import ServiceNotifier
from anonymize_requests.state_machine import Effect, Event, RequestStateMachine

logger = get_logger(__name__)


class Scheduler(Protocol):
    def enqueue(self, job: JobDescriptor) -> None: ...


class InMemoryScheduler:
    """FIFO job queue; failed jobs are recorded and draining carries on."""

    def __init__(self) -> None:
        self.jobs: deque[JobDescriptor] = deque()
        self.failed: list[tuple[JobDescriptor, Exception]] = []

    def enqueue(self, job: JobDescriptor) -> None:
        logger.info("job_enqueued", request_id=job.request_id, service=job.service)
        self.jobs.append(job)

    async def drain(self, perform: Callable[[JobDescriptor], Awaitable[object]]) -> int:
        processed = 0
        while self.jobs:
            job = self.jobs.popleft()
            try:
                await perform(job)
            except Exception as exc:
                logger.error("job_failed", request_id=job.request_id, service=job.service, error=str(exc), exc_info=True)
                self.failed.append((job, exc))
            processed += 1
        return processed

    async def work(self, perform: Callable[[JobDescriptor], Awaitable[object]], *, poll_seconds: float) -> None:
        """Drain the queue forever, sleeping ``poll_seconds`` whenever it is empty. Stop by cancelling."""
        logger.info("worker_started", poll_seconds=poll_seconds)
        while True:
            await self.drain(perform)
            await asyncio.sleep(poll_seconds)


class DispatchCoordinator:
    def __init__(
        self,
        config: AnonymizeConfig,
        machine: RequestStateMachine,
        registry: OwnerRegistry,
        notifier: ServiceNotifier,
        scheduler: Scheduler | None = None,
    ):
        if config.dispatch_mode is DispatchMode.ASYNC and scheduler is None:
            raise ValueError("async dispatch mode requires a scheduler")
        self.config = config
        self.machine = machine
        self.registry = registry
        self.notifier = notifier
        self.scheduler = scheduler

    @property
    def inline(self) -> bool:
        return self.config.dispatch_mode is DispatchMode.SYNC

    async def run_effects(self, request: AnonymizeRequest, effects: Iterable[Effect]) -> None:
        for effect in effects:
            if effect is Effect.DISPATCH_TO_SERVICES:
                await self.dispatch_approved(request)
            elif effect is Effect.ANONYMIZE_LOCALLY:
                await self.dispatch_anonymize(request)

    async def dispatch_approved(self, request: AnonymizeRequest) -> None:
        log = logger.bind(request_id=request.id, owner_type=request.owner.type)

        # Resolved before the local step runs; afterwards the owner may no longer know it.
        identifier = self.registry.resolve(request.owner).external_identifier()

        deferred: tuple[Effect, ...] = ()
        if not request.running:
            request, deferred = self.machine.apply(request.id, Event.RUN)

        log.info("dispatching_to_services", services=list(self.config.services), inline=self.inline)
        for service_name in self.config.services:
            await self.call_service(request, service_name, identifier)

        await self.run_effects(request, deferred)

    async def call_service(self, request: AnonymizeRequest, service_name: str, identifier: str) -> None:
        if self.inline:
            await self.notifier.notify(service_name, identifier, self.config.token_for(service_name))
        else:
            self.scheduler.enqueue(JobDescriptor(request_id=request.id, service=service_name, user=identifier))

    async def dispatch_anonymize(self, request: AnonymizeRequest) -> None:
        if self.inline:
            await self.anonymize(request)
        else:
            self.scheduler.enqueue(JobDescriptor(request_id=request.id))

    async def anonymize(self, request: AnonymizeRequest) -> AnonymizeRequest:
        log = logger.bind(request_id=request.id, owner_type=request.owner.type, owner_id=request.owner.id)
        log.info("anonymizing_owner")

        result = self.registry.resolve(request.owner).anonymize_locally()
        if inspect.isawaitable(result):
            await result

        done, _ = self.machine.apply(request.id, Event.DONE)
        log.info("owner_anonymized")
        return done

    async def perform(self, job: JobDescriptor) -> None:
        """Worker-side entry point for one scheduled job."""
        if job.local:
            await self.anonymize(self.machine.store.get(job.request_id))
            return
        await self.notifier.notify(job.service, job.user, self.config.token_for(job.service))
