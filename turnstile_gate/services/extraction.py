"""Token and client IP extraction from inbound requests."""

import ipaddress

from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request

from turnstile_gate.config import TurnstileConfig
from turnstile_gate.utils.logging_config import get_logger

logger = get_logger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _is_form(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() in FORM_CONTENT_TYPES


async def _form_token(request: Request, field_name: str) -> str | None:
    # Buffer the raw body first so the downstream handler can still read it
    await request.body()
    try:
        form = await request.form()
        value = form.get(field_name)
    except (HTTPException, MultiPartException) as e:
        logger.info("Unparseable form body, skipping form token", error=str(e))
        return None
    if isinstance(value, str):
        return value.strip() or None
    return None


async def extract_token(request: Request, config: TurnstileConfig) -> str | None:
    """Find the Turnstile token on a request.

    Sources are tried in order: header, form field, cookie. The first
    non-empty value wins.

    Args:
        request: The inbound request
        config: Gate configuration naming the sources

    Returns:
        The token, or None if no source carries one
    """
    if config.header_name:
        token = request.headers.get(config.header_name, "").strip()
        if token:
            return token

    if config.form_field and _is_form(request):
        token = await _form_token(request, config.form_field)
        if token:
            return token

    if config.cookie_name:
        token = request.cookies.get(config.cookie_name, "").strip()
        if token:
            return token

    return None


def _valid_ip(candidate: str) -> str | None:
    try:
        return str(ipaddress.ip_address(candidate.strip()))
    except ValueError:
        return None


def resolve_client_ip(request: Request, trust_proxy_headers: bool = False) -> str | None:
    """Return the visitor IP for ``remoteip``.

    Prefers the Cloudflare header, then the first X-Forwarded-For hop, then
    the socket peer. Proxy headers are only honored when the app sits behind
    a proxy that sets them.
    """
    if trust_proxy_headers:
        ip = _valid_ip(request.headers.get("cf-connecting-ip", ""))
        if ip:
            return ip
        forwarded_for = request.headers.get("x-forwarded-for", "")
        ip = _valid_ip(forwarded_for.split(",")[0])
        if ip:
            return ip

    if request.client and request.client.host:
        return _valid_ip(request.client.host)
    return None
