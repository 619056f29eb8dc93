"""Turnstile gate configuration."""

import os
from dataclasses import dataclass, field
from enum import Enum

import httpx

from turnstile_gate.errors import ConfigurationError

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
TURNSTILE_FIELD_NAME = "cf-turnstile-response"

DEFAULT_TIMEOUT = 5.0
DEFAULT_DISCONNECT_POLL_INTERVAL = 0.1


class FailurePolicy(str, Enum):
    """What the gate does when the verification service cannot be reached."""

    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


@dataclass(frozen=True)
class TurnstileConfig:
    """Immutable gate configuration, built once at startup and shared by all requests.

    Token sources are tried in order: ``header_name``, ``form_field``,
    ``cookie_name``. The first non-empty value wins. Set a source to ``None``
    to disable it.

    ``on_transport_error`` decides what happens when Cloudflare is unreachable,
    times out, or answers with something that is not a verification verdict.
    ``FailurePolicy.FAIL_CLOSED`` (the default) rejects the request with a 503.
    ``FailurePolicy.FAIL_OPEN`` admits it unverified.
    """

    secret_key: str = field(repr=False)
    verify_url: str = TURNSTILE_VERIFY_URL
    timeout: float = DEFAULT_TIMEOUT

    # Token extraction
    header_name: str | None = TURNSTILE_FIELD_NAME
    form_field: str | None = TURNSTILE_FIELD_NAME
    cookie_name: str | None = TURNSTILE_FIELD_NAME

    on_transport_error: FailurePolicy = FailurePolicy.FAIL_CLOSED

    # Routing: None means every method is gated
    protected_methods: frozenset[str] | None = None
    exempt_paths: frozenset[str] = frozenset()

    # Client IP resolution
    trust_proxy_headers: bool = False
    require_remote_ip: bool = False

    # Optional checks on the verification result
    expected_hostnames: frozenset[str] = frozenset()
    expected_action: str | None = None

    disconnect_poll_interval: float = DEFAULT_DISCONNECT_POLL_INTERVAL

    def __post_init__(self) -> None:
        if not self.secret_key or not self.secret_key.strip():
            raise ConfigurationError("Turnstile secret key is required")
        if not self.verify_url:
            raise ConfigurationError("Turnstile verify URL is required")
        _check_verify_url(self.verify_url)
        if self.timeout <= 0:
            raise ConfigurationError("Turnstile timeout must be positive")
        if self.disconnect_poll_interval <= 0:
            raise ConfigurationError("Disconnect poll interval must be positive")
        if not (self.header_name or self.form_field or self.cookie_name):
            raise ConfigurationError(
                "At least one token source (header, form field or cookie) is required"
            )

        # Accept plain iterables and strings for the policy, store normalized values
        try:
            policy = FailurePolicy(self.on_transport_error)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown transport error policy: {self.on_transport_error!r}"
            ) from e
        object.__setattr__(self, "on_transport_error", policy)
        if self.protected_methods is not None:
            object.__setattr__(
                self,
                "protected_methods",
                frozenset(method.upper() for method in self.protected_methods),
            )
        object.__setattr__(self, "exempt_paths", frozenset(self.exempt_paths))
        object.__setattr__(
            self,
            "expected_hostnames",
            frozenset(host.lower() for host in self.expected_hostnames),
        )

    @property
    def fail_open(self) -> bool:
        return self.on_transport_error is FailurePolicy.FAIL_OPEN

    def is_protected(self, method: str, path: str) -> bool:
        """Return True if a request with this method and path must be verified."""
        if path in self.exempt_paths:
            return False
        if self.protected_methods is None:
            return True
        return method.upper() in self.protected_methods

    @classmethod
    def from_env(cls) -> "TurnstileConfig":
        """Build a config from ``TURNSTILE_*`` environment variables.

        Raises:
            ConfigurationError: If ``TURNSTILE_SECRET_KEY`` is missing or a value is invalid
        """
        try:
            timeout = float(os.getenv("TURNSTILE_TIMEOUT", str(DEFAULT_TIMEOUT)))
        except ValueError as e:
            raise ConfigurationError("TURNSTILE_TIMEOUT must be a number") from e

        methods = _split_list(os.getenv("TURNSTILE_PROTECTED_METHODS", ""))

        return cls(
            secret_key=os.getenv("TURNSTILE_SECRET_KEY", ""),
            verify_url=os.getenv("TURNSTILE_VERIFY_URL", TURNSTILE_VERIFY_URL),
            timeout=timeout,
            header_name=_optional_name(os.getenv("TURNSTILE_HEADER_NAME", TURNSTILE_FIELD_NAME)),
            form_field=_optional_name(os.getenv("TURNSTILE_FORM_FIELD", TURNSTILE_FIELD_NAME)),
            cookie_name=_optional_name(os.getenv("TURNSTILE_COOKIE_NAME", TURNSTILE_FIELD_NAME)),
            on_transport_error=(
                FailurePolicy.FAIL_OPEN
                if _env_flag("TURNSTILE_FAIL_OPEN")
                else FailurePolicy.FAIL_CLOSED
            ),
            protected_methods=frozenset(methods) if methods else None,
            exempt_paths=frozenset(_split_list(os.getenv("TURNSTILE_EXEMPT_PATHS", ""))),
            trust_proxy_headers=_env_flag("TURNSTILE_TRUST_PROXY_HEADERS"),
            require_remote_ip=_env_flag("TURNSTILE_REQUIRE_REMOTE_IP"),
            expected_hostnames=frozenset(
                _split_list(os.getenv("TURNSTILE_EXPECTED_HOSTNAMES", ""))
            ),
            expected_action=os.getenv("TURNSTILE_EXPECTED_ACTION") or None,
        )


def _check_verify_url(value: str) -> None:
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Invalid Turnstile verify URL: {value!r}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(
            f"Turnstile verify URL must be an absolute http(s) URL: {value!r}"
        )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _optional_name(value: str) -> str | None:
    # An empty variable disables that token source
    return value.strip() or None
