from __future__ import annotations

import ipaddress
import os
from collections.abc import Iterable, Mapping

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse

DEFAULT_ALLOWED_NETS = "127.0.0.1/32"


def parse_nets(raw: str) -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    nets: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = []
    for part in (raw or "").split(","):
        s = part.strip()
        if not s:
            continue
        try:
            nets.append(ipaddress.ip_network(s, strict=False))
        except ValueError as exc:
            raise ValueError(f"invalid_allowed_net: {s}") from exc
    return nets


class NetworkAllowlistMiddleware(BaseHTTPMiddleware):
    """Reject requests from clients outside ALLOWED_NETS; the API can trigger sync runs."""

    def __init__(self, app, allowed_nets: Iterable[str]):
        super().__init__(app)
        self.allowed: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = []
        self.allowlist_error: str | None = None
        try:
            self.allowed = parse_nets(",".join(allowed_nets))
        except ValueError as exc:
            self.allowlist_error = str(exc)

    async def dispatch(self, request: Request, call_next):
        if self.allowlist_error:
            return PlainTextResponse(f"forbidden: allowlist misconfigured ({self.allowlist_error})", status_code=503)

        client_host = request.client.host if request.client else ""
        try:
            ip = ipaddress.ip_address(client_host)
        except ValueError:
            return PlainTextResponse("forbidden: unknown client address", status_code=403)

        if self.allowed and not any(ip in net for net in self.allowed):
            return PlainTextResponse("forbidden: client not in allowed networks", status_code=403)

        return await call_next(request)


def get_allowed_nets(environ: Mapping[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    raw = env.get("ALLOWED_NETS", DEFAULT_ALLOWED_NETS)
    return [s.strip() for s in raw.split(",") if s.strip()]
