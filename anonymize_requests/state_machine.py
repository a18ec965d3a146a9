"""Anonymize request lifecycle.

``fire`` is the pure transition function: it maps a state and an event to the
next state plus the effects that must run once that state is committed.
``RequestStateMachine`` applies it inside a store transaction and hands the
effects back to the caller, which runs them only after the commit succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from structlog import get_logger

from anonymize_requests.models import AnonymizeRequest, RequestState
from anonymize_requests.store import RequestStore

logger = get_logger(__name__)


class Event(str, Enum):
    APPROVE = "approve"
    CANCEL = "cancel"
    DENY = "deny"
    RUN = "run"
    DONE = "done"


class Effect(str, Enum):
    DISPATCH_TO_SERVICES = "dispatch_to_services"
    ANONYMIZE_LOCALLY = "anonymize_locally"


# event -> (from_state, to_state, post-commit effects)
_TRANSITIONS: dict[Event, tuple[RequestState, RequestState, tuple[Effect, ...]]] = {
    Event.APPROVE: (RequestState.WAITING_FOR_APPROVAL, RequestState.PENDING, (Effect.DISPATCH_TO_SERVICES,)),
    Event.CANCEL: (RequestState.WAITING_FOR_APPROVAL, RequestState.CANCELED, ()),
    Event.DENY: (RequestState.WAITING_FOR_APPROVAL, RequestState.DENIED, ()),
    Event.RUN: (RequestState.PENDING, RequestState.RUNNING, (Effect.ANONYMIZE_LOCALLY,)),
    Event.DONE: (RequestState.RUNNING, RequestState.DONE, ()),
}


class InvalidTransitionError(Exception):
    def __init__(self, event: Event, state: RequestState):
        super().__init__(f"event '{event.value}' is not allowed from state '{state.value}'")
        self.event = event
        self.state = state


@dataclass(frozen=True)
class Transition:
    state: RequestState
    effects: tuple[Effect, ...] = field(default_factory=tuple)


def fire(state: RequestState, event: Event) -> Transition:
    from_state, to_state, effects = _TRANSITIONS[event]
    if state is not from_state:
        raise InvalidTransitionError(event, state)
    return Transition(to_state, effects)


def may_fire(state: RequestState, event: Event) -> bool:
    return _TRANSITIONS[event][0] is state


class RequestStateMachine:
    def __init__(self, store: RequestStore):
        self.store = store

    def apply(self, request_id: str, event: Event) -> tuple[AnonymizeRequest, tuple[Effect, ...]]:
        """Commit ``event`` for the request and return the committed row with its pending effects."""
        with self.store.transaction() as tx:
            request = tx.get(request_id)
            transition = fire(request.state, event)
            committed = tx.save(request.model_copy(update={"state": transition.state}))

        logger.info(
            "transition_committed",
            request_id=request_id,
            transition=event.value,
            from_state=request.state.value,
            to_state=committed.state.value,
            effects=[effect.value for effect in transition.effects],
        )
        return committed, transition.effects
