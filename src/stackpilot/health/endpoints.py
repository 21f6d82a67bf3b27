"""Scatter-gather HTTP probes over independent endpoints."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

import httpx

from stackpilot.domain.models import EndpointSpec, HealthReport, HealthState, HealthVerdict
from stackpilot.utils.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8


async def probe_endpoint(
    client: httpx.AsyncClient,
    spec: EndpointSpec,
    timeout: float,
) -> HealthVerdict:
    if not spec.url:
        return HealthVerdict(
            endpoint_name=spec.name,
            state=HealthState.NO_CHECK_CONFIGURED,
            detail="no check configured",
        )
    started = time.perf_counter()
    try:
        response = await client.get(spec.probe_url, timeout=timeout)
    except httpx.TimeoutException:
        return HealthVerdict(
            endpoint_name=spec.name,
            state=HealthState.DOWN,
            detail=f"timed out after {timeout:g}s",
        )
    except httpx.HTTPError as exc:
        return HealthVerdict(
            endpoint_name=spec.name,
            state=HealthState.DOWN,
            detail=f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
        )
    latency_ms = (time.perf_counter() - started) * 1000
    if response.is_success:
        return HealthVerdict(
            endpoint_name=spec.name,
            state=HealthState.UP,
            detail=f"HTTP {response.status_code} in {latency_ms:.0f}ms",
            latency_ms=latency_ms,
        )
    return HealthVerdict(
        endpoint_name=spec.name,
        state=HealthState.DOWN,
        detail=f"HTTP {response.status_code}",
        latency_ms=latency_ms,
    )


async def probe_endpoints(
    specs: Sequence[EndpointSpec],
    per_probe_timeout: float,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[HealthVerdict]:
    """One verdict per spec, in input order, whatever the individual outcomes."""
    if not specs:
        return []
    limit = asyncio.Semaphore(max(1, min(len(specs), max_concurrency)))

    async with httpx.AsyncClient(transport=transport, follow_redirects=True) as client:

        async def _bounded(spec: EndpointSpec) -> HealthVerdict:
            async with limit:
                try:
                    return await asyncio.wait_for(
                        probe_endpoint(client, spec, per_probe_timeout),
                        # Slack for connection setup on top of httpx's own timeout.
                        timeout=per_probe_timeout + 1.0,
                    )
                except asyncio.TimeoutError:
                    return HealthVerdict(
                        endpoint_name=spec.name,
                        state=HealthState.DOWN,
                        detail=f"timed out after {per_probe_timeout:g}s",
                    )
                except Exception as exc:  # noqa: BLE001 - one bad probe must not sink the report
                    logger.warning("Probe for %s raised %s", spec.name, exc)
                    return HealthVerdict(
                        endpoint_name=spec.name,
                        state=HealthState.DOWN,
                        detail=f"{type(exc).__name__}: {exc}",
                    )

        return list(await asyncio.gather(*(_bounded(spec) for spec in specs)))


def probe_all(
    specs: Sequence[EndpointSpec],
    per_probe_timeout: float,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthReport:
    verdicts = asyncio.run(
        probe_endpoints(specs, per_probe_timeout, max_concurrency, transport=transport)
    )
    return HealthReport(generated_at=utc_now(), verdicts=tuple(verdicts))
