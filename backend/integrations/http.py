"""Shared HTTP error mapping for collaborator clients."""

import httpx

from core.exceptions import ActionError, TransientActionError


async def send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue a request, translating failures into action errors.

    Timeouts, connection errors, 429 and 5xx become TransientActionError;
    any other 4xx except 404 becomes ActionError. 404 responses are
    returned to the caller.
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientActionError(f"{method} {url} timed out: {e}")
    except httpx.TransportError as e:
        raise TransientActionError(f"{method} {url} failed: {e}")

    if response.status_code == 429 or response.status_code >= 500:
        raise TransientActionError(f"{method} {url} returned HTTP {response.status_code}")
    if response.status_code >= 400 and response.status_code != 404:
        raise ActionError(f"{method} {url} returned HTTP {response.status_code}: {response.text[:500]}")
    return response
