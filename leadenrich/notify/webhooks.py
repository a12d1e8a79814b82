"""Outbound webhook notifications for enrichment, consent and deletion events.

Subscribers come from ``WEBHOOK_URLS``; each delivery is a signed JSON POST
retried on transport errors and 5xx answers. Delivery outcomes are logged and
kept in a bounded in-memory log; nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx

from leadenrich.config import settings
from leadenrich.schemas import EnrichmentResult, utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "RealEstateCRM-Webhook/1.0"
DELIVERY_LOG_LIMIT = 500

ENRICHMENT_COMPLETED = "enrichment_completed"
ENRICHMENT_FAILED = "enrichment_failed"
CONSENT_CHANGED = "consent_changed"
DATA_DELETED = "data_deleted"
ALL_EVENTS = (ENRICHMENT_COMPLETED, ENRICHMENT_FAILED, CONSENT_CHANGED, DATA_DELETED)

# Credit fields that may leave the system, and only while the score is verified.
CREDIT_SHAREABLE = ("score_verified", "credit_rating", "confidence", "vendor")


@dataclass
class Webhook:
    id: str
    url: str
    events: tuple[str, ...] = ALL_EVENTS
    secret: str = ""
    active: bool = True
    registered_at: datetime = field(default_factory=utcnow)

    def wants(self, event_type: str) -> bool:
        return self.active and event_type in self.events

    def describe(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "events": list(self.events),
            "active": self.active,
            "registered_at": self.registered_at.isoformat(),
        }


def _split(raw: str) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def webhooks_from_settings() -> list[Webhook]:
    events = tuple(_split(settings.WEBHOOK_EVENTS)) or ALL_EVENTS
    return [
        Webhook(f"webhook_{index}", url, events=events, secret=settings.WEBHOOK_SECRET)
        for index, url in enumerate(_split(settings.WEBHOOK_URLS), start=1)
    ]


def sign(body: bytes, secret: str) -> str:
    if not secret:
        return ""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def sanitize_data(data: dict | None) -> dict | None:
    if not data:
        return data
    sanitized = dict(data)
    credit = sanitized.get("credit")
    if credit is not None:
        shared = {k: credit.get(k) for k in CREDIT_SHAREABLE if k in credit}
        if credit.get("score_verified") and "credit_score" in credit:
            shared["credit_score"] = credit["credit_score"]
        sanitized["credit"] = shared
    return sanitized


class WebhookNotifier:
    def __init__(
        self,
        webhooks: list[Webhook] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int | None = None,
        retry_delay_seconds: float | None = None,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.webhooks: dict[str, Webhook] = {}
        for webhook in webhooks_from_settings() if webhooks is None else webhooks:
            self.register(webhook)
        self.transport = transport
        self.max_retries = max(1, max_retries or settings.WEBHOOK_MAX_RETRIES)
        self.retry_delay_seconds = (
            settings.WEBHOOK_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        )
        self.timeout_seconds = timeout_seconds or settings.WEBHOOK_TIMEOUT_SECONDS
        self._sleep = sleep
        self.deliveries: list[dict] = []

    def register(self, webhook: Webhook) -> None:
        self.webhooks[webhook.id] = webhook

    def unregister(self, webhook_id: str) -> None:
        self.webhooks.pop(webhook_id, None)

    def registered(self) -> list[dict]:
        return [w.describe() for w in self.webhooks.values()]

    async def send_enrichment_notification(
        self,
        lead_id,
        result: EnrichmentResult | None = None,
        event_type: str = ENRICHMENT_COMPLETED,
        error: str | None = None,
    ) -> list[dict]:
        payload = {"event_type": event_type, "lead_id": lead_id, "timestamp": utcnow().isoformat()}
        if result is not None:
            payload.update(
                {
                    "enrichment_id": result.enrichment_id,
                    "quality_score": result.quality_score,
                    "confidence": result.confidence,
                    "sources": list(result.sources),
                    "data": sanitize_data(result.to_dict()["data"]),
                }
            )
        if error is not None:
            payload["error"] = error
        return await self.notify(payload)

    async def send_consent_notification(self, lead_id, action: str, details: dict | None = None) -> list[dict]:
        details = details or {}
        payload = {
            "event_type": CONSENT_CHANGED,
            "lead_id": lead_id,
            "timestamp": utcnow().isoformat(),
            "action": action,
            "consent_id": details.get("consent_id"),
            "granted_at": details.get("granted_at"),
            "expires_at": details.get("expires_at"),
            "withdrawn_at": details.get("withdrawn_at"),
            "reason": details.get("reason"),
        }
        return await self.notify(payload)

    async def send_deletion_notification(self, lead_id, deletion: dict) -> list[dict]:
        payload = {
            "event_type": DATA_DELETED,
            "lead_id": lead_id,
            "timestamp": utcnow().isoformat(),
            "request_type": deletion.get("request_type"),
            "deleted_at": deletion.get("deleted_at"),
            "data_removed": deletion.get("data_removed"),
        }
        return await self.notify(payload)

    async def notify(self, payload: dict) -> list[dict]:
        targets = [w for w in self.webhooks.values() if w.wants(payload["event_type"])]
        if not targets:
            return []
        body = json.dumps(payload, default=str).encode("utf-8")
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            outcomes = await asyncio.gather(
                *(self._deliver(client, w, body) for w in targets), return_exceptions=True
            )
        results = []
        for webhook, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                outcome = {
                    "webhook_id": webhook.id,
                    "success": False,
                    "attempts": 0,
                    "status_code": None,
                    "error": str(outcome),
                }
            self._record(payload, outcome)
            results.append(outcome)
        return results

    async def _deliver(self, client: httpx.AsyncClient, webhook: Webhook, body: bytes) -> dict:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-ID": webhook.id,
            "X-Signature": sign(body, webhook.secret),
            "X-Timestamp": str(int(utcnow().timestamp() * 1000)),
        }
        error = None
        status_code = None
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.post(webhook.url, content=body, headers=headers)
            except httpx.HTTPError as exc:
                error, status_code = str(exc) or type(exc).__name__, None
            else:
                # 4xx means the subscriber got it and refused; only 5xx is retried.
                if resp.status_code < 500:
                    return {
                        "webhook_id": webhook.id,
                        "success": True,
                        "attempts": attempt,
                        "status_code": resp.status_code,
                    }
                error, status_code = f"HTTP {resp.status_code}", resp.status_code
            if attempt < self.max_retries:
                await self._sleep(self.retry_delay_seconds * attempt)
        return {
            "webhook_id": webhook.id,
            "success": False,
            "attempts": self.max_retries,
            "status_code": status_code,
            "error": error,
        }

    def _record(self, payload: dict, result: dict) -> None:
        entry = {
            **result,
            "lead_id": payload.get("lead_id"),
            "event_type": payload["event_type"],
            "sent_at": utcnow().isoformat(),
        }
        self.deliveries.append(entry)
        if len(self.deliveries) > DELIVERY_LOG_LIMIT:
            del self.deliveries[:-DELIVERY_LOG_LIMIT]
        if result["success"]:
            logger.info("webhook.delivered", extra={k: entry[k] for k in ("webhook_id", "event_type", "lead_id")})
        else:
            logger.warning(
                "webhook.delivery_failed",
                extra={k: entry.get(k) for k in ("webhook_id", "event_type", "lead_id", "status_code", "error")},
            )

    def stats(self, webhook_id: str | None = None) -> dict:
        rows = [d for d in self.deliveries if webhook_id is None or d["webhook_id"] == webhook_id]
        successful = sum(1 for d in rows if d["success"])
        failures = [d for d in rows if not d["success"]]
        return {
            "total": len(rows),
            "successful": successful,
            "failed": len(failures),
            "success_rate_pct": round(successful / len(rows) * 100, 2) if rows else 0.0,
            "recent_failures": failures[-10:][::-1],
        }
