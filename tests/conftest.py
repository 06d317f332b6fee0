"""Shared fixtures: a DNS-free SSRF guard and MockTransport site builders."""

import socket

import httpx
import pytest

from siteaudit.infrastructure.ssrf_guard import SSRFGuard

PUBLIC_ADDRESS = "93.184.216.34"


def fake_resolver(overrides=None):
    """Resolver answering every hostname with a public IPv4 address.

    ``overrides`` maps hostname -> (ipv4 list, ipv6 list).
    """
    overrides = overrides or {}

    async def resolve(hostname, family):
        v4, v6 = overrides.get(hostname, ([PUBLIC_ADDRESS], []))
        return list(v6 if family == socket.AF_INET6 else v4)

    return resolve


@pytest.fixture
def guard():
    return SSRFGuard(resolver=fake_resolver())


@pytest.fixture
def site_transport():
    """Build a MockTransport from a {path: response-or-callable} map. Unknown paths 404."""

    def build(routes):
        async def handler(request: httpx.Request) -> httpx.Response:
            route = routes.get(request.url.path)
            if route is None:
                return httpx.Response(404, text="not found")
            if callable(route):
                result = route(request)
                if hasattr(result, "__await__"):
                    result = await result
                return result
            # Fresh copy per request; a Response can only be consumed once
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)

        return httpx.MockTransport(handler)

    return build
