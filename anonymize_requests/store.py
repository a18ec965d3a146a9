"""Persistence boundary for anonymize requests.

Transactions are serialized by a process-wide lock, so a check-then-insert
performed inside one transaction cannot interleave with another. Writes are
buffered and only become visible when the transaction exits cleanly; every
save carries the version it was read at and is rejected if another commit
got there first.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

from structlog import get_logger

from anonymize_requests.models import ACTIVE_STATES, AnonymizeRequest, OwnerRef

logger = get_logger(__name__)


class StoreError(Exception):
    pass


class UnknownRequestError(StoreError):
    def __init__(self, request_id: str):
        super().__init__(f"anonymize request '{request_id}' does not exist")
        self.request_id = request_id


class ConcurrentUpdateError(StoreError):
    def __init__(self, request_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"anonymize request '{request_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class Transaction(Protocol):
    def get(self, request_id: str) -> AnonymizeRequest: ...

    def count_active(self, owner: OwnerRef) -> int: ...

    def insert(self, request: AnonymizeRequest) -> AnonymizeRequest: ...

    def save(self, request: AnonymizeRequest) -> AnonymizeRequest: ...


class RequestStore(Protocol):
    def transaction(self) -> AbstractContextManager[Transaction]: ...

    def get(self, request_id: str) -> AnonymizeRequest: ...

    def for_owner(self, owner: OwnerRef) -> list[AnonymizeRequest]: ...


class _InMemoryTransaction:
    def __init__(self, rows: dict[str, AnonymizeRequest]):
        self._rows = rows
        self._writes: dict[str, AnonymizeRequest] = {}
        self._expected: dict[str, int | None] = {}

    def _visible(self) -> dict[str, AnonymizeRequest]:
        return {**self._rows, **self._writes}

    def get(self, request_id: str) -> AnonymizeRequest:
        try:
            return self._visible()[request_id]
        except KeyError:
            raise UnknownRequestError(request_id) from None

    def count_active(self, owner: OwnerRef) -> int:
        return sum(1 for row in self._visible().values() if row.owner == owner and row.state in ACTIVE_STATES)

    def insert(self, request: AnonymizeRequest) -> AnonymizeRequest:
        self._expected.setdefault(request.id, None)
        self._writes[request.id] = request
        return request

    def save(self, request: AnonymizeRequest) -> AnonymizeRequest:
        self._expected.setdefault(request.id, request.version)
        saved = request.model_copy(update={"version": request.version + 1})
        self._writes[request.id] = saved
        return saved

    def commit(self) -> None:
        for request_id, expected in self._expected.items():
            current = self._rows.get(request_id)
            if expected is None:
                if current is not None:
                    raise StoreError(f"anonymize request '{request_id}' already exists")
                continue
            if current is None:
                raise UnknownRequestError(request_id)
            if current.version != expected:
                raise ConcurrentUpdateError(request_id, expected, current.version)
        self._rows.update(self._writes)


class InMemoryRequestStore:
    def __init__(self) -> None:
        self._rows: dict[str, AnonymizeRequest] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[_InMemoryTransaction]:
        with self._lock:
            tx = _InMemoryTransaction(self._rows)
            try:
                yield tx
            except Exception:
                logger.debug("transaction_rolled_back")
                raise
            tx.commit()

    def get(self, request_id: str) -> AnonymizeRequest:
        with self._lock:
            try:
                return self._rows[request_id]
            except KeyError:
                raise UnknownRequestError(request_id) from None

    def for_owner(self, owner: OwnerRef) -> list[AnonymizeRequest]:
        with self._lock:
            return sorted(
                (row for row in self._rows.values() if row.owner == owner),
                key=lambda row: row.created_at,
            )
