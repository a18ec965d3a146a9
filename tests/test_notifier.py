"""Tests for payload signing and service response classification."""

import hashlib
import hmac

import httpx
import pytest

from anonymize_requests.config import ServiceConfig
from anonymize_requests.services.notifier import (
    NotFoundError,
    ServiceError,
    ServiceNetworkError,
    ServiceNotifier,
    UnauthorizedError,
    UnhandledStatusError,
    UnprocessableEntityError,
    classify,
    encrypted_params,
    sign,
    verify,
)
from conftest import RecordingTransport, make_config


def _notifier(transport: RecordingTransport, **overrides) -> ServiceNotifier:
    return ServiceNotifier(
        make_config(**overrides),
        client=httpx.AsyncClient(transport=httpx.MockTransport(transport)),
    )


class TestSigning:
    def test_sign_is_hex_hmac_sha512(self) -> None:
        expected = hmac.new(b"secret", b"jane@example.com", hashlib.sha512).hexdigest()
        assert sign("jane@example.com", "secret") == expected
        assert len(expected) == 128

    def test_sign_is_deterministic(self) -> None:
        assert sign("jane@example.com", "tok1") == sign("jane@example.com", "tok1")

    def test_sign_is_keyed(self) -> None:
        assert sign("jane@example.com", "tok1") != sign("jane@example.com", "tok2")

    def test_encrypted_params_shape(self) -> None:
        params = encrypted_params("jane@example.com", "tok1")
        assert params == {"user": "jane@example.com", "hash": sign("jane@example.com", "tok1")}

    def test_verify(self) -> None:
        signature = sign("jane@example.com", "tok1")
        assert verify("jane@example.com", signature, "tok1")
        assert not verify("jane@example.com", signature, "tok2")
        assert not verify("john@example.com", signature, "tok1")


class TestClassify:
    @pytest.mark.parametrize("code", [200, 201, 299])
    def test_success(self, code: int) -> None:
        response = httpx.Response(code, text="ok")
        assert classify("crm", response) is response

    @pytest.mark.parametrize(
        ("code", "error"),
        [
            (404, NotFoundError),
            (401, UnauthorizedError),
            (422, UnprocessableEntityError),
            (500, ServiceError),
            (503, ServiceError),
            (599, ServiceError),
            (418, UnhandledStatusError),
            (300, UnhandledStatusError),
            (403, UnhandledStatusError),
        ],
    )
    def test_errors(self, code: int, error: type) -> None:
        with pytest.raises(error) as excinfo:
            classify("crm", httpx.Response(code, text="nope"))
        assert type(excinfo.value) is error
        assert excinfo.value.status_code == code
        assert excinfo.value.service_name == "crm"

    def test_not_found_message(self) -> None:
        with pytest.raises(NotFoundError, match="unable to find given user"):
            classify("crm", httpx.Response(404))

    @pytest.mark.parametrize(("code", "error"), [(422, UnprocessableEntityError), (502, ServiceError)])
    def test_body_is_carried(self, code: int, error: type) -> None:
        with pytest.raises(error) as excinfo:
            classify("crm", httpx.Response(code, text='{"error": "bad user"}'))
        assert excinfo.value.body == '{"error": "bad user"}'

    def test_unhandled_carries_code_and_body(self) -> None:
        with pytest.raises(UnhandledStatusError) as excinfo:
            classify("crm", httpx.Response(418, text="teapot"))
        assert excinfo.value.status_code == 418
        assert excinfo.value.body == "teapot"
        assert "(418)" in str(excinfo.value)


class TestServiceNotifier:
    @pytest.mark.asyncio
    async def test_posts_signed_form_to_notification_path(self) -> None:
        transport = RecordingTransport()
        notifier = _notifier(transport)

        response = await notifier.notify("crm", "jane@example.com")

        assert response is not False
        assert response.status_code == 200
        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://crm.example.com/api/anonymize"
        assert transport.form(0) == {"user": "jane@example.com", "hash": sign("jane@example.com", "global-secret")}

    @pytest.mark.asyncio
    async def test_service_token_overrides_global(self) -> None:
        transport = RecordingTransport()
        notifier = _notifier(transport)

        await notifier.notify("billing", "jane@example.com")

        assert transport.form(0)["hash"] == sign("jane@example.com", "billing-secret")

    @pytest.mark.asyncio
    async def test_explicit_token(self) -> None:
        transport = RecordingTransport()
        notifier = _notifier(transport)

        await notifier.notify("crm", "jane@example.com", "explicit")

        assert transport.form(0)["hash"] == sign("jane@example.com", "explicit")

    @pytest.mark.asyncio
    async def test_request_timeout_is_sixty_seconds(self) -> None:
        transport = RecordingTransport()
        notifier = _notifier(transport)

        await notifier.notify("crm", "jane@example.com")

        timeout = transport.requests[0].extensions["timeout"]
        assert timeout["read"] == 60.0
        assert timeout["connect"] == 60.0

    @pytest.mark.asyncio
    async def test_service_without_host_is_skipped(self) -> None:
        transport = RecordingTransport()
        notifier = _notifier(transport, services={"legacy": ServiceConfig(token="legacy-secret")})

        assert await notifier.notify("legacy", "jane@example.com") is False
        assert await notifier.notify("unconfigured", "jane@example.com") is False
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_classified_error_is_raised(self) -> None:
        transport = RecordingTransport()
        transport.status_by_host["crm.example.com"] = 422
        transport.body = "missing user"
        notifier = _notifier(transport)

        with pytest.raises(UnprocessableEntityError) as excinfo:
            await notifier.notify("crm", "jane@example.com")
        assert excinfo.value.body == "missing user"

    @pytest.mark.asyncio
    async def test_transport_failure_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = ServiceNotifier(make_config(), client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ServiceNetworkError) as excinfo:
            await notifier.notify("crm", "jane@example.com")
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
