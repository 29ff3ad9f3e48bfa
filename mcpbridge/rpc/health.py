"""Health probing for a running bridge.

Used by the `mcpbridge health` command (container HEALTHCHECK) and by
scripts that start a bridge and need to wait for it.

Probe Strategy:
    GET /health on the given port:
    - 200 with {"status": "healthy"} -> HEALTHY
    - Any other HTTP answer -> UNHEALTHY
    - Connection refused -> NO_SERVER
    - Timeout -> TIMEOUT
    - Other error -> ERROR

Example usage:
    from mcpbridge.rpc.health import check_health, HealthResult

    result, body = await check_health(8080)
    if result == HealthResult.HEALTHY:
        print(body["mcp_initialized"])
"""

import asyncio
from enum import Enum
from typing import Any

import httpx


class HealthResult(Enum):
    """Result of a health probe.

    Attributes:
        HEALTHY: The bridge answered and reports itself healthy.
        UNHEALTHY: Something answered, but not with a healthy status.
        NO_SERVER: Nothing is listening on the port.
        TIMEOUT: The probe timed out.
        ERROR: An unexpected error occurred during the probe.
    """

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NO_SERVER = "no_server"
    TIMEOUT = "timeout"
    ERROR = "error"


async def check_health(
    port: int,
    host: str = "127.0.0.1",
    timeout: float = 5.0,
) -> tuple[HealthResult, dict[str, Any] | None]:
    """Probe a bridge's /health endpoint.

    Args:
        port: The port to probe.
        host: The host to probe. Defaults to localhost.
        timeout: Request timeout in seconds. Defaults to 5.0.

    Returns:
        Tuple of (result, body). body is the decoded JSON object when the
        server answered with one, else None.
    """
    url = f"http://{host}:{port}/health"

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
    except httpx.ConnectError:
        return HealthResult.NO_SERVER, None
    except httpx.TimeoutException:
        return HealthResult.TIMEOUT, None
    except httpx.HTTPError:
        return HealthResult.ERROR, None

    return _analyze_response(response)


def _analyze_response(
    response: httpx.Response,
) -> tuple[HealthResult, dict[str, Any] | None]:
    try:
        data = response.json()
    except ValueError:
        return HealthResult.UNHEALTHY, None

    if not isinstance(data, dict):
        return HealthResult.UNHEALTHY, None

    if response.status_code == 200 and data.get("status") == "healthy":
        return HealthResult.HEALTHY, data
    return HealthResult.UNHEALTHY, data


async def wait_for_healthy(
    port: int,
    host: str = "127.0.0.1",
    timeout: float = 30.0,
    poll_interval: float = 0.1,
) -> bool:
    """Poll /health until the bridge reports healthy or timeout expires.

    Returns:
        True if the bridge became healthy within the timeout.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    probe_timeout = min(1.0, timeout / 10)  # Short timeout per probe

    while loop.time() < deadline:
        result, _body = await check_health(port, host, timeout=probe_timeout)
        if result == HealthResult.HEALTHY:
            return True
        await asyncio.sleep(poll_interval)

    return False
