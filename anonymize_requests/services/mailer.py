from typing import Protocol

from structlog import get_logger

logger = get_logger(__name__)


class Mailer(Protocol):
    def notify_requester(self, request_id: str) -> None: ...


class LogMailer:
    def notify_requester(self, request_id: str) -> None:
        logger.info("anonymize_requested_mail", request_id=request_id)
