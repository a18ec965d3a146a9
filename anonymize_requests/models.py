import datetime as dt
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RequestState(str, Enum):
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    DENIED = "denied"
    CANCELED = "canceled"


ACTIVE_STATES = frozenset({RequestState.WAITING_FOR_APPROVAL, RequestState.PENDING, RequestState.RUNNING})


class OwnerRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    id: str


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class AnonymizeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner: OwnerRef
    requested_by: str | None = None
    state: RequestState = RequestState.WAITING_FOR_APPROVAL
    created_at: dt.datetime = Field(default_factory=_utcnow)
    version: int = 0

    @property
    def running(self) -> bool:
        return self.state is RequestState.RUNNING


class JobDescriptor(BaseModel):
    """One unit of deferred work handed to the scheduler.

    A descriptor naming a service notifies that service about ``user``; a
    descriptor without a service runs the local anonymize step of the request.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    service: str | None = None
    user: str | None = None

    @property
    def local(self) -> bool:
        return self.service is None


# === HTTP API payloads ===


class CreateAnonymizeRequest(BaseModel):
    owner_type: str
    owner_id: str
    requested_by: str | None = None


class AnonymizeRequestResponse(BaseModel):
    id: str
    owner_type: str
    owner_id: str
    requested_by: str | None
    state: RequestState
    created_at: dt.datetime

    @classmethod
    def from_request(cls, request: AnonymizeRequest) -> "AnonymizeRequestResponse":
        return cls(
            id=request.id,
            owner_type=request.owner.type,
            owner_id=request.owner.id,
            requested_by=request.requested_by,
            state=request.state,
            created_at=request.created_at,
        )
