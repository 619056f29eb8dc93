"""Cloudflare Turnstile verification client."""

from types import TracebackType

import httpx
from pydantic import SecretStr, ValidationError

from turnstile_gate.config import TurnstileConfig
from turnstile_gate.errors import (
    INVALID_INPUT_RESPONSE,
    MISSING_INPUT_RESPONSE,
    TransportError,
)
from turnstile_gate.models import VerificationRequest, VerificationResult
from turnstile_gate.utils.logging_config import get_logger

logger = get_logger(__name__)

# Cloudflare rejects longer tokens outright
MAX_TOKEN_LENGTH = 2048


class TurnstileClient:
    """Sends tokens to the siteverify endpoint.

    Holds no per-call state, so one instance can serve any number of
    concurrent requests. Pass ``http_client`` to reuse a connection pool
    (or a test transport); the client takes ownership of it and closes it in
    ``aclose()``. Otherwise a short-lived client is opened per call.
    """

    def __init__(
        self,
        config: TurnstileConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self._http_client = http_client
        self._secret = SecretStr(config.secret_key)

    async def __aenter__(self) -> "TurnstileClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    def build_request(
        self,
        token: str,
        remote_ip: str | None = None,
        idempotency_key: str | None = None,
    ) -> VerificationRequest:
        return VerificationRequest(
            token=token,
            secret=self._secret,
            remote_ip=remote_ip,
            idempotency_key=idempotency_key,
        )

    async def verify(
        self,
        token: str,
        remote_ip: str | None = None,
        idempotency_key: str | None = None,
    ) -> VerificationResult:
        """Verify a Turnstile token.

        Args:
            token: The token produced by the client-side widget
            remote_ip: Optional visitor IP, forwarded as ``remoteip``
            idempotency_key: Optional key that lets Cloudflare dedupe a resent check

        Returns:
            The service verdict. Empty or oversized tokens fail locally without a network call.

        Raises:
            TransportError: If the service is unreachable, times out, or returns a malformed answer
        """
        return await self.verify_request(
            self.build_request(token, remote_ip=remote_ip, idempotency_key=idempotency_key)
        )

    async def verify_request(self, request: VerificationRequest) -> VerificationResult:
        """Run one siteverify round trip for a pre-built request."""
        if not request.token:
            logger.warning("Empty Turnstile token provided")
            return VerificationResult.failure(MISSING_INPUT_RESPONSE)

        if len(request.token) > MAX_TOKEN_LENGTH:
            logger.warning("Oversized Turnstile token provided", length=len(request.token))
            return VerificationResult.failure(INVALID_INPUT_RESPONSE)

        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, request)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                    response = await self._post(client, request)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.error("Turnstile verification timed out", timeout=self.config.timeout)
            raise TransportError("Turnstile verification timed out") from e
        except httpx.HTTPError as e:
            logger.error("Turnstile verification HTTP error", error=str(e))
            raise TransportError(f"Turnstile verification request failed: {e}") from e
        except ValueError as e:
            logger.error("Turnstile verification returned invalid JSON", error=str(e))
            raise TransportError("Turnstile verification returned invalid JSON") from e

        result = self._parse(payload)
        if not result.success:
            logger.warning("Turnstile verification failed", error_codes=result.error_codes)
        return result

    async def _post(
        self, client: httpx.AsyncClient, request: VerificationRequest
    ) -> httpx.Response:
        return await client.post(
            self.config.verify_url,
            data=request.to_form(),
            timeout=self.config.timeout,
        )

    @staticmethod
    def _parse(payload: object) -> VerificationResult:
        if not isinstance(payload, dict) or not isinstance(payload.get("success"), bool):
            logger.error("Turnstile verification returned an unexpected payload")
            raise TransportError("Turnstile verification returned an unexpected payload")
        try:
            return VerificationResult.model_validate(payload)
        except ValidationError as e:
            logger.error("Turnstile verification payload failed validation", error=str(e))
            raise TransportError("Turnstile verification returned an unexpected payload") from e
