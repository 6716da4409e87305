"""Origin, redirect and transport trust decisions for browser callers."""

import ipaddress
import logging
import re
from urllib.parse import urlsplit

from starlette.requests import Request

from tfa.core.settings import AuthSettings

logger = logging.getLogger(__name__)

DEFAULT_CORS_METHODS = ("GET", "OPTIONS")
DEFAULT_ALLOW_HEADERS = "Content-Type, Authorization"
DEFAULT_MAX_AGE_SECONDS = 86_400
LEGACY_SAFE_PATHS = ("/oauth/test", "/oauth", "/login")


def get_current_origin(request: Request) -> str | None:
    """Origin the caller used to reach this server, honouring proxy headers."""
    host = request.headers.get("host")
    if not host:
        return None
    proto = request.headers.get("x-forwarded-proto")
    if proto:
        proto = proto.split(",")[0].strip()
    else:
        proto = request.url.scheme
    return f"{proto}://{host}"


def is_https(request: Request) -> bool:
    """Whether the request arrived over HTTPS, directly or via a proxy."""
    forwarded = request.headers.get("x-forwarded-proto")
    if forwarded:
        return forwarded.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


def normalize_origin(value: str) -> str | None:
    """Reduce a URL to scheme://host[:port], or None if it is not absolute."""
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    default_port = 443 if parts.scheme == "https" else 80
    if port is not None and port != default_port:
        return f"{parts.scheme}://{host}:{port}"
    return f"{parts.scheme}://{host}"


def _hostname(origin: str) -> str:
    return (urlsplit(origin).hostname or "").lower()


def is_localhost_hostname(hostname: str) -> bool:
    """localhost, loopback literals and mDNS .local names."""
    return hostname in ("localhost", "127.0.0.1", "::1") or hostname.endswith(".local")


def is_local_ip(hostname: str) -> bool:
    """Loopback, RFC 1918, link-local or unique-local address literals."""
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return ip.is_loopback or ip.is_private or ip.is_link_local


def match_pattern(pattern: str, origin: str) -> bool:
    """Glob patterns match the whole origin; exact ones compare normalized origins."""
    if not pattern:
        return False
    if "*" in pattern:
        regex = re.escape(pattern).replace(r"\*", ".*")
        return re.fullmatch(regex, origin, flags=re.IGNORECASE) is not None
    normalized = normalize_origin(pattern)
    if normalized is None:
        return pattern.lower() == origin.lower()
    return normalized.lower() == origin.lower()


class TrustGuard:
    """Decides which origins may call the API and where tokens may be sent."""

    def __init__(
        self,
        allowed_patterns: list[str],
        production: bool = False,
        allow_legacy_relative: bool = False,
    ) -> None:
        self._patterns = allowed_patterns
        self._production = production
        self._allow_legacy_relative = allow_legacy_relative

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "TrustGuard":
        return cls(
            allowed_patterns=settings.get_allowed_redirect_list(),
            production=settings.is_production,
            allow_legacy_relative=settings.legacy_relative_redirects,
        )

    def _matches_whitelist(self, origin: str) -> bool:
        return any(match_pattern(p, origin) for p in self._patterns)

    def is_origin_allowed(
        self, origin: str | None, current_origin: str | None = None
    ) -> bool:
        """Absent, same-origin, localhost-class or whitelisted origins pass."""
        if not origin:
            return True
        normalized = normalize_origin(origin)
        if normalized is None:
            return False
        if current_origin:
            current = normalize_origin(current_origin)
            if current is not None and current.lower() == normalized.lower():
                return True
        if is_localhost_hostname(_hostname(normalized)):
            return True
        return self._matches_whitelist(normalized)

    def is_allowed_redirect_url(self, url: str, current_host: str | None = None) -> bool:
        """Only the origin of an absolute redirect target is checked."""
        if not url:
            return False
        if url.startswith("/"):
            if url.startswith("//") or not self._allow_legacy_relative:
                return False
            path = urlsplit(url).path
            return any(path == p or path.startswith(p + "/") for p in LEGACY_SAFE_PATHS)
        origin = normalize_origin(url)
        if origin is None:
            return False
        target = urlsplit(origin)
        if current_host and target.netloc.lower() == current_host.lower():
            return not self._production or target.scheme == "https"
        if not self._production and is_localhost_hostname(_hostname(origin)):
            return True
        allowed = self._matches_whitelist(origin)
        if not allowed:
            logger.info("redirect origin %s is not whitelisted", origin)
        return allowed

    def build_cors_headers(
        self,
        origin: str | None,
        methods: tuple[str, ...] | list[str] = DEFAULT_CORS_METHODS,
        allow_credentials: bool = False,
        current_origin: str | None = None,
    ) -> dict[str, str]:
        """CORS headers echoing origin only when it is allowed."""
        headers = {
            "Access-Control-Allow-Methods": ", ".join(methods),
            "Access-Control-Allow-Headers": DEFAULT_ALLOW_HEADERS,
            "Access-Control-Max-Age": str(DEFAULT_MAX_AGE_SECONDS),
        }
        if origin and self.is_origin_allowed(origin, current_origin):
            headers["Access-Control-Allow-Origin"] = origin
            if allow_credentials:
                headers["Access-Control-Allow-Credentials"] = "true"
            headers["Vary"] = "Origin"
        return headers

    def is_https_required(self, origin: str | None) -> bool:
        """HTTPS is mandatory in production except for local hosts."""
        if not self._production:
            return False
        if not origin:
            return True
        normalized = normalize_origin(origin)
        if normalized is None:
            return True
        hostname = _hostname(normalized)
        return not (is_localhost_hostname(hostname) or is_local_ip(hostname))

    def assert_https_required(self, request: Request, origin: str | None) -> bool:
        """True when HTTPS is not required or the request used it."""
        if not self.is_https_required(origin):
            return True
        return is_https(request)
