"""Base abstraction for lead enrichment providers.

A provider owns one data source (property, social or credit), a rate limiter,
and an ordered list of upstream vendors. ``enrich`` walks the vendors primary
first and returns the first successful, normalized payload.
"""

from __future__ import annotations

import base64
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from leadenrich.config import settings
from leadenrich.enrich.resilience import CircuitBreaker, RateLimiter
from leadenrich.errors import ProviderError
from leadenrich.schemas import LeadRecord, utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "RealEstateCRM-Enrichment/1.0"


@dataclass
class Vendor:
    """Connection details for one upstream data vendor."""

    name: str
    base_url: str
    auth: str = "api_key_query"
    credentials: dict[str, str] = field(default_factory=dict)
    health_path: str = "/health"
    api_key_param: str = "api_key"
    api_key_header: str = "X-API-Key"

    def is_configured(self) -> bool:
        return bool(self.base_url) and bool(self.credentials) and all(self.credentials.values())

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def auth_headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self.auth == "basic":
            user, secret = list(self.credentials.values())[:2]
            token = base64.b64encode(f"{user}:{secret}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        elif self.auth == "bearer":
            headers["Authorization"] = f"Bearer {self.credentials.get('api_key', '')}"
        elif self.auth == "api_key_header":
            headers[self.api_key_header] = self.credentials.get("api_key", "")
        return headers

    def auth_params(self) -> dict[str, str]:
        if self.auth == "api_key_query":
            return {self.api_key_param: self.credentials.get("api_key", "")}
        return {}


def parse_name(name: str | None) -> dict[str, str]:
    parts = [p for p in (name or "").split(" ") if p]
    return {
        "first_name": parts[0] if parts else "",
        "last_name": parts[-1] if parts else "",
        "middle_name": " ".join(parts[1:-1]) if len(parts) > 2 else "",
    }


def parse_address(address: str | None) -> dict[str, str]:
    parts = [p.strip() for p in (address or "").split(",")]
    parts += [""] * (4 - len(parts))
    return {"street": parts[0], "city": parts[1], "state": parts[2], "zip": parts[3]}


class EnrichmentProvider(ABC):
    name: str = "base"
    source: str = "base"
    rate_limit_per_min: int = 60
    timeout_seconds: float = 10.0

    def __init__(
        self,
        vendors: list[Vendor],
        primary_vendor: str | None = None,
        rate_limit_per_min: int | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        ordered = list(vendors)
        if primary_vendor:
            ordered.sort(key=lambda v: 0 if v.name == primary_vendor else 1)
        self.vendors = ordered
        self.primary_vendor = ordered[0].name if ordered else None
        if rate_limit_per_min is not None:
            self.rate_limit_per_min = rate_limit_per_min
        if timeout_seconds is not None:
            self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.rate_limiter = RateLimiter(self.rate_limit_per_min, name=self.name, clock=clock)
        self.breakers = {
            v.name: CircuitBreaker(
                v.name,
                failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                reset_seconds=settings.CIRCUIT_RESET_SECONDS,
                clock=clock,
            )
            for v in ordered
        }

    def is_configured(self) -> bool:
        return any(v.is_configured() for v in self.vendors)

    def client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout_seconds, transport=self.transport)

    @abstractmethod
    async def fetch(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict:
        """Call one vendor and return its payload in the common source schema."""

    @abstractmethod
    def compute_confidence(self, output: dict) -> float:
        """Score 0..1 from verification flags, recency and corroborating fields."""

    async def preflight(self, lead: LeadRecord) -> None:
        """Checks that must pass before any network call; raise to abort."""

    async def finalize_output(self, lead: LeadRecord, vendor: Vendor, output: dict) -> dict:
        return output

    async def enrich(self, lead: LeadRecord) -> dict:
        self.rate_limiter.check_limit()
        await self.preflight(lead)

        attempts: list[str] = []
        last_status: int | None = None
        for vendor in self.vendors:
            if not vendor.is_configured():
                attempts.append(f"{vendor.name}: not configured")
                continue
            breaker = self.breakers[vendor.name]
            if not breaker.allow():
                attempts.append(f"{vendor.name}: circuit open")
                continue

            started = time.perf_counter()
            try:
                async with self.client() as client:
                    output = await self.fetch(vendor, lead, client)
            except httpx.TimeoutException:
                last_status, reason = 504, "timeout"
            except httpx.HTTPStatusError as exc:
                last_status = exc.response.status_code if exc.response is not None else 502
                reason = f"HTTP {last_status}"
            except httpx.HTTPError as exc:
                last_status, reason = 503, f"transport error: {exc}"
            except ProviderError as exc:
                last_status, reason = exc.status_code, exc.message
            except (ValueError, TypeError, AttributeError) as exc:
                # 200 with a non-JSON or wrongly shaped body.
                last_status, reason = 502, f"malformed response: {exc}"
            else:
                breaker.record_success()
                output["confidence"] = round(self.compute_confidence(output), 4)
                output["vendor"] = vendor.name
                output["retrieved_at"] = utcnow().isoformat()
                logger.info(
                    "provider.vendor_success",
                    extra={
                        "provider": self.name,
                        "vendor": vendor.name,
                        "duration_ms": int((time.perf_counter() - started) * 1000),
                    },
                )
                return await self.finalize_output(lead, vendor, output)

            # A clean "no records" answer says nothing about vendor health.
            if last_status == 404:
                breaker.release()
            else:
                breaker.record_failure()
            attempts.append(f"{vendor.name}: {reason}")
            logger.warning(
                "provider.vendor_failed",
                extra={"provider": self.name, "vendor": vendor.name, "reason": reason, "lead_id": lead.id},
            )

        raise ProviderError(
            last_status or 503,
            f"All {self.source} vendors failed ({'; '.join(attempts) or 'no vendors'})",
            provider=self.name,
        )

    async def check_vendor_health(self, vendor: Vendor) -> bool:
        if not vendor.is_configured():
            return False
        try:
            async with self.client(timeout=settings.HEALTH_PROBE_TIMEOUT_SECONDS) as client:
                resp = await client.get(
                    vendor.url(vendor.health_path),
                    params=vendor.auth_params(),
                    headers=vendor.auth_headers(),
                )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def get_health_status(self) -> dict[str, Any]:
        vendors: dict[str, dict] = {}
        for vendor in self.vendors:
            checked_at = utcnow().isoformat()
            try:
                healthy = await self.check_vendor_health(vendor)
                vendors[vendor.name] = {
                    "status": "healthy" if healthy else "unhealthy",
                    "circuit": self.breakers[vendor.name].state,
                    "last_checked": checked_at,
                }
            except Exception as exc:
                vendors[vendor.name] = {"status": "error", "error": str(exc), "last_checked": checked_at}

        statuses = [v["status"] for v in vendors.values()]
        if "healthy" not in statuses:
            overall = "error"
        elif vendors.get(self.primary_vendor, {}).get("status") != "healthy":
            overall = "degraded"
        else:
            overall = "healthy"
        return {
            "overall": overall,
            "primary": self.primary_vendor,
            "rate_limit_remaining": self.rate_limiter.remaining(),
            "providers": vendors,
        }
