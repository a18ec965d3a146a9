from anonymize_requests.models import AnonymizeRequest
from anonymize_requests.store import Transaction


class DuplicateRequestError(Exception):
    """An owner already has a request waiting for approval, pending or running."""

    field = "owner_id"

    def __init__(self, request: AnonymizeRequest):
        super().__init__(f"{request.owner.type} '{request.owner.id}' already has an active anonymize request")
        self.request = request


class UniquenessGuard:
    def check(self, tx: Transaction, candidate: AnonymizeRequest) -> None:
        if tx.count_active(candidate.owner) > 0:
            raise DuplicateRequestError(candidate)
