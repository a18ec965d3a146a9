import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Annotated, Literal

import structlog
from fastapi import Depends, FastAPI, HTTPException, status

from anonymize_requests.config import AnonymizeConfig, DispatchMode
from anonymize_requests.container import container
from anonymize_requests.guard import DuplicateRequestError
from anonymize_requests.models import AnonymizeRequestResponse, CreateAnonymizeRequest, OwnerRef
from anonymize_requests.owners import OwnerError
from anonymize_requests.services import AnonymizeRequestService, DispatchCoordinator, InMemoryScheduler
from anonymize_requests.services.notifier import ServiceCallError
from anonymize_requests.state_machine import Event, InvalidTransitionError
from anonymize_requests.store import ConcurrentUpdateError, UnknownRequestError

logger = structlog.get_logger("anonymize_requests.main")


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    config = container[AnonymizeConfig]
    if config.dispatch_mode is not DispatchMode.ASYNC:
        yield
        return

    worker = asyncio.create_task(
        container[InMemoryScheduler].work(
            container[DispatchCoordinator].perform,
            poll_seconds=config.worker_poll_seconds,
        ),
    )
    try:
        yield
    finally:
        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker
        logger.info("Job worker stopped")


app = FastAPI(title="Anonymize Requests", lifespan=lifespan)


def get_request_service() -> AnonymizeRequestService:
    return container[AnonymizeRequestService]


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/anonymize-requests", response_model=AnonymizeRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_anonymize_request(
    payload: CreateAnonymizeRequest,
    *,
    service: Annotated[AnonymizeRequestService, Depends(get_request_service)],
) -> AnonymizeRequestResponse:
    owner = OwnerRef(type=payload.owner_type, id=payload.owner_id)
    try:
        request = service.create(owner, requested_by=payload.requested_by)
    except DuplicateRequestError as e:
        logger.info("Duplicate anonymize request rejected", owner_type=owner.type, owner_id=owner.id)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": ["body", e.field], "msg": str(e), "type": "not_unique"}],
        ) from e
    except OwnerError as e:
        logger.info("Anonymize request for unknown owner rejected", owner_type=owner.type, owner_id=owner.id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": ["body", e.field], "msg": str(e), "type": "invalid_owner"}],
        ) from e
    return AnonymizeRequestResponse.from_request(request)


@app.get("/anonymize-requests/{request_id}", response_model=AnonymizeRequestResponse)
async def get_anonymize_request(
    request_id: str,
    *,
    service: Annotated[AnonymizeRequestService, Depends(get_request_service)],
) -> AnonymizeRequestResponse:
    try:
        request = service.get(request_id)
    except UnknownRequestError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return AnonymizeRequestResponse.from_request(request)


@app.post("/anonymize-requests/{request_id}/{event}", response_model=AnonymizeRequestResponse)
async def fire_event(
    request_id: str,
    event: Literal["approve", "cancel", "deny", "run"],
    *,
    service: Annotated[AnonymizeRequestService, Depends(get_request_service)],
) -> AnonymizeRequestResponse:
    log = logger.bind(request_id=request_id, request_event=event)
    try:
        request = await service.fire(request_id, Event(event))
    except UnknownRequestError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (InvalidTransitionError, ConcurrentUpdateError) as e:
        log.info("Anonymize request event rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ServiceCallError as e:
        log.error("Notifying service failed", service=e.service_name, error=str(e), exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    except OwnerError as e:
        log.error("Owner resolution failed", error=str(e), exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    log.info("Anonymize request event applied", state=request.state.value)
    return AnonymizeRequestResponse.from_request(request)
