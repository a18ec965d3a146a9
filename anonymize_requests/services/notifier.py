from __future__ import annotations

import hashlib
import hmac
from time import monotonic
from typing import Literal

import httpx
from structlog import BoundLogger, get_logger

from anonymize_requests.config import AnonymizeConfig

logger = get_logger(__name__)


# === Signing ===


def sign(identifier: str, token: str) -> str:
    return hmac.new(token.encode(), identifier.encode(), hashlib.sha512).hexdigest()


def verify(identifier: str, signature: str, token: str) -> bool:
    return hmac.compare_digest(sign(identifier, token), signature)


def encrypted_params(identifier: str, token: str) -> dict[str, str]:
    return {"user": identifier, "hash": sign(identifier, token)}


# === Exceptions ===


class ServiceCallError(Exception):
    def __init__(self, service_name: str, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.service_name = service_name
        self.status_code = status_code
        self.body = body


class ServiceNetworkError(ServiceCallError):
    pass


class NotFoundError(ServiceCallError):
    pass


class UnauthorizedError(ServiceCallError):
    pass


class UnprocessableEntityError(ServiceCallError):
    pass


class ServiceError(ServiceCallError):
    pass


class UnhandledStatusError(ServiceCallError):
    pass


def classify(service_name: str, response: httpx.Response) -> httpx.Response:
    """Return ``response`` if it is a success, raise the matching error otherwise."""
    code = response.status_code
    body = response.text

    if httpx.codes.OK <= code < httpx.codes.MULTIPLE_CHOICES:
        return response
    if code == httpx.codes.NOT_FOUND:
        raise NotFoundError(service_name, f"service '{service_name}' was unable to find given user", status_code=code)
    if code == httpx.codes.UNAUTHORIZED:
        raise UnauthorizedError(service_name, f"service '{service_name}' returned unauthorized", status_code=code)
    if code == httpx.codes.UNPROCESSABLE_ENTITY:
        raise UnprocessableEntityError(
            service_name,
            f"service '{service_name}' cannot process params, and returned {body}",
            status_code=code,
            body=body,
        )
    if httpx.codes.INTERNAL_SERVER_ERROR <= code < 600:
        raise ServiceError(
            service_name,
            f"service '{service_name}' had an internal server error, and returned {body}",
            status_code=code,
            body=body,
        )
    raise UnhandledStatusError(
        service_name,
        f"service '{service_name}' returned unhandled status code ({code}) with body {body}, aborting",
        status_code=code,
        body=body,
    )


# === Notifier ===


class ServiceNotifier:
    def __init__(self, config: AnonymizeConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client or httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            headers=self._default_headers(),
        )

    def _default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "anonymize-requests/1.0",
        }

    def _log_error_response(self, response: httpx.Response, log: BoundLogger) -> None:
        try:
            body = response.json()
            log.error("service_error_response", status_code=response.status_code, body=body)
        except ValueError:
            log.error("service_error_response", status_code=response.status_code, body=response.text)

    def url_for(self, service_name: str) -> str | None:
        service = self.config.services.get(service_name)
        if service is None or not service.host:
            return None
        return service.host + self.config.notification_path

    async def notify(
        self,
        service_name: str,
        identifier: str,
        token: str | None = None,
    ) -> httpx.Response | Literal[False]:
        log = logger.bind(service=service_name)

        url = self.url_for(service_name)
        if url is None:
            # services must have a host in configuration
            log.warning("service_without_host_skipped")
            return False

        if token is None:
            token = self.config.token_for(service_name)

        start_ts = monotonic()
        try:
            response = await self._client.post(
                url,
                data=encrypted_params(identifier, token),
                timeout=self.config.timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            log.warning("network_error", error=str(exc))
            raise ServiceNetworkError(service_name, f"network error while notifying '{service_name}'") from exc

        log = log.bind(status_code=response.status_code, duration_ms=int((monotonic() - start_ts) * 1000))
        try:
            classify(service_name, response)
        except ServiceCallError:
            self._log_error_response(response, log)
            raise

        log.info("service_notified")
        return response

    async def aclose(self) -> None:
        await self._client.aclose()
