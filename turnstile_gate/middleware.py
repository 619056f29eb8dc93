"""Request gate that admits only requests carrying a valid Turnstile token.

The gate is a plain ``(request, call_next) -> response`` callable. It can be
mounted as Starlette/FastAPI middleware with ``TurnstileMiddleware``, or used
per route as a FastAPI dependency via ``TurnstileGate.dependency``.
"""

from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from turnstile_gate.config import TurnstileConfig
from turnstile_gate.errors import (
    ACTION_MISMATCH,
    HOSTNAME_MISMATCH,
    ClientDisconnected,
    TransportError,
    TurnstileRejection,
)
from turnstile_gate.models import VerificationResult
from turnstile_gate.services.extraction import extract_token, resolve_client_ip
from turnstile_gate.services.turnstile import TurnstileClient
from turnstile_gate.utils.logging_config import get_logger, request_context
from turnstile_gate.utils.util import call_with_disconnect_cancel

logger = get_logger(__name__)


class TurnstileGate:
    """Verifies the Turnstile token of every protected request.

    Holds only its immutable config and a stateless client, so a single
    instance is shared by all concurrently handled requests.
    """

    def __init__(self, config: TurnstileConfig, client: TurnstileClient | None = None):
        self.config = config
        self.client = client or TurnstileClient(config)
        logger.info(
            "Turnstile gate configured",
            header=config.header_name,
            form_field=config.form_field,
            cookie=config.cookie_name,
            on_transport_error=config.on_transport_error.value,
        )

    async def __call__(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.config.is_protected(request.method, request.url.path):
            return await call_next(request)

        with _request_scope(request):
            try:
                await self.check(request)
            except TurnstileRejection as rejection:
                return rejection.to_response()
            finally:
                # Release any parsed form; downstream re-reads the buffered body
                await request.close()

        return await call_next(request)

    async def check(self, request: Request) -> VerificationResult | None:
        """Verify the request's token and record the outcome on ``request.state.turnstile``.

        Returns:
            The verification result, or None if the request was admitted
            fail-open because the service was unreachable

        Raises:
            TurnstileRejection: If the request must not reach the handler
        """
        # Buffer the body so disconnect polling never consumes it
        await request.body()

        token = await extract_token(request, self.config)
        if not token:
            logger.warning("Turnstile token missing")
            raise TurnstileRejection.missing_token()

        remote_ip = resolve_client_ip(request, self.config.trust_proxy_headers)
        if remote_ip is None and self.config.require_remote_ip:
            logger.warning("Client IP address not found")
            raise TurnstileRejection.missing_remote_ip()

        try:
            result = await call_with_disconnect_cancel(
                self.client.verify(token, remote_ip=remote_ip),
                request.is_disconnected,
                self.config.disconnect_poll_interval,
            )
        except ClientDisconnected as e:
            logger.info("Client disconnected during Turnstile verification")
            raise TurnstileRejection.client_closed() from e
        except TransportError as e:
            if self.config.fail_open:
                logger.error(
                    "Turnstile service unavailable, admitting request",
                    error=str(e),
                    policy=self.config.on_transport_error.value,
                )
                request.state.turnstile = None
                return None
            logger.error(
                "Turnstile service unavailable, rejecting request",
                error=str(e),
                policy=self.config.on_transport_error.value,
            )
            raise TurnstileRejection.service_unavailable() from e

        if not result.success:
            logger.warning("Turnstile token rejected", error_codes=result.error_codes)
            raise TurnstileRejection.verification_failed(result.error_codes)

        mismatch = self._expectation_mismatch(result)
        if mismatch:
            logger.warning(
                "Turnstile token issued for another site or action",
                error_code=mismatch,
                hostname=result.hostname,
                action=result.action,
            )
            raise TurnstileRejection.verification_failed([mismatch])

        logger.debug("Turnstile verification passed", hostname=result.hostname)
        request.state.turnstile = result
        return result

    def _expectation_mismatch(self, result: VerificationResult) -> str | None:
        hostnames = self.config.expected_hostnames
        if hostnames and (result.hostname or "").lower() not in hostnames:
            return HOSTNAME_MISMATCH
        action = self.config.expected_action
        if action is not None and result.action != action:
            return ACTION_MISMATCH
        return None

    def dependency(self) -> Callable[[Request], Awaitable[VerificationResult | None]]:
        """Return a FastAPI dependency that gates a single route.

        Rejections surface as ``TurnstileRejection``; register
        ``rejection_handler`` on the app to render them.
        """

        async def verify_turnstile(request: Request) -> VerificationResult | None:
            with _request_scope(request):
                return await self.check(request)

        return verify_turnstile


def _request_scope(request: Request) -> AbstractContextManager[None]:
    request_id = request.headers.get("x-request-id") or str(uuid4())
    return request_context(request_id=request_id, path=request.url.path)


class TurnstileMiddleware(BaseHTTPMiddleware):
    """Starlette/FastAPI middleware wrapping ``TurnstileGate``.

    Usage:
        app.add_middleware(TurnstileMiddleware, config=TurnstileConfig.from_env())
    """

    def __init__(
        self,
        app: ASGIApp,
        config: TurnstileConfig,
        client: TurnstileClient | None = None,
    ):
        self.gate = TurnstileGate(config, client)
        super().__init__(app, dispatch=self.gate)


async def rejection_handler(request: Request, exc: Exception) -> Response:
    """Exception handler rendering ``TurnstileRejection`` raised from route dependencies."""
    if not isinstance(exc, TurnstileRejection):
        raise exc
    return exc.to_response()
