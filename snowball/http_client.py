"""
Shared outbound HTTP client factory.

Integrations open short-lived clients per operation with
`async with http_client.async_client() as client:`.
"""

import httpx

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def async_client(**kwargs) -> httpx.AsyncClient:
    kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
    return httpx.AsyncClient(**kwargs)
