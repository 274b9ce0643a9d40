# fleet_rollout_service/src/fleet_rollout_service/clients/health_probe_client.py
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import settings
from ..logging_config import logger
from ..models.rollout import HealthCheckEndpoint, HttpMethod


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one HTTP probe against a health check endpoint."""

    success: bool
    status_code: Optional[int] = None
    duration_ms: float = 0.0
    reason: Optional[str] = None


def build_timeout(timeout_ms: int) -> httpx.Timeout:
    """Overall timeout from the endpoint, with connect capped by settings."""
    connect_ms = min(timeout_ms, settings.HEALTH_CHECK_CONNECT_TIMEOUT_MS)
    return httpx.Timeout(timeout_ms / 1000.0, connect=connect_ms / 1000.0)


async def probe_endpoint(
    endpoint: HealthCheckEndpoint, client: Optional[httpx.AsyncClient] = None
) -> ProbeResult:
    """
    Issues exactly one request to the endpoint and checks the response.

    Success requires the expected status code and, when configured, the
    expected substring in the body. Network errors, timeouts and any other
    exception are returned as a failed result, never raised.
    """
    started = time.perf_counter()
    method = HttpMethod(endpoint.method).value
    request_kwargs = {
        "headers": dict(endpoint.headers or {}),
        "timeout": build_timeout(endpoint.timeout_ms),
    }
    if method == HttpMethod.POST.value:
        request_kwargs["content"] = b""

    try:
        if client is not None:
            response = await client.request(method, endpoint.url, **request_kwargs)
        else:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.request(method, endpoint.url, **request_kwargs)
    except httpx.TimeoutException:
        reason = f"Request failed: timeout after {endpoint.timeout_ms}ms"
        logger.warning(f"[HealthCheck:{endpoint.name}] {reason}")
        return ProbeResult(False, None, _elapsed_ms(started), reason)
    except httpx.HTTPError as e:
        reason = f"Request failed: {e.__class__.__name__}: {e}"
        logger.warning(f"[HealthCheck:{endpoint.name}] {reason}")
        return ProbeResult(False, None, _elapsed_ms(started), reason)
    except Exception as e:
        reason = f"Exception: {e}"
        logger.error(f"[HealthCheck:{endpoint.name}] Unexpected error: {e}", exc_info=True)
        return ProbeResult(False, None, _elapsed_ms(started), reason)

    duration_ms = _elapsed_ms(started)
    if response.status_code != endpoint.expected_status:
        return ProbeResult(
            False,
            response.status_code,
            duration_ms,
            f"Expected status {endpoint.expected_status}, got {response.status_code}",
        )

    if endpoint.expected_body_contains and endpoint.expected_body_contains not in response.text:
        return ProbeResult(
            False,
            response.status_code,
            duration_ms,
            "Response body does not contain expected content",
        )

    return ProbeResult(True, response.status_code, duration_ms)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 1)
