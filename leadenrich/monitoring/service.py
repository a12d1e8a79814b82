"""Enrichment metrics, alerts, health and analytics.

State lives in an injected ``MetricsStore`` so each service instance (and each
test) owns its own counters; ``reset()`` clears them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from leadenrich.schemas import EnrichmentResult, utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
ALERT_LIMIT = 100
SUCCESS_QUALITY = 80
CACHE_EMA_FACTOR = 0.1


def _empty_metrics() -> dict:
    return {
        "total_enrichments": 0,
        "successful_enrichments": 0,
        "failed_enrichments": 0,
        "average_processing_ms": 0.0,
        "provider_health": {},
        "cache_hit_rate": 0.0,
        "quality_score_distribution": {},
        "errors_by_provider": {},
        "enrichment_triggers": {},
    }


@dataclass
class MetricsStore:
    metrics: dict = field(default_factory=_empty_metrics)
    alerts: list[dict] = field(default_factory=list)
    history: list[dict] = field(default_factory=list)

    def clear(self) -> None:
        self.metrics = _empty_metrics()
        self.alerts = []
        self.history = []


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class MonitoringService:
    def __init__(self, store: MetricsStore | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store or MetricsStore()
        self._clock = clock

    @property
    def metrics(self) -> dict:
        return self.store.metrics

    @property
    def alerts(self) -> list[dict]:
        return self.store.alerts

    def reset(self) -> None:
        self.store.clear()

    def record_completion(self, result: EnrichmentResult, duration_ms: float) -> None:
        m = self.store.metrics
        m["total_enrichments"] += 1
        succeeded = result.quality_score >= SUCCESS_QUALITY
        if succeeded:
            m["successful_enrichments"] += 1
        else:
            m["failed_enrichments"] += 1

        total = m["total_enrichments"]
        m["average_processing_ms"] = (m["average_processing_ms"] * (total - 1) + duration_ms) / total

        bucket = str((int(result.quality_score) // 10) * 10)
        m["quality_score_distribution"][bucket] = m["quality_score_distribution"].get(bucket, 0) + 1

        for source in result.sources:
            health = m["provider_health"].setdefault(source, {"total_requests": 0, "successful_requests": 0})
            health["total_requests"] += 1
            if succeeded:
                health["successful_requests"] += 1

        self.store.history.append(
            {
                "timestamp": self._clock().isoformat(),
                "processing_ms": duration_ms,
                "quality_score": result.quality_score,
                "confidence": result.confidence,
                "sources": list(result.sources),
            }
        )
        if len(self.store.history) > HISTORY_LIMIT:
            del self.store.history[:-HISTORY_LIMIT]

        self._check_result_alerts(result)

    def record_failure(self, error: Exception | str, provider: str = "enrichment") -> None:
        m = self.store.metrics
        m["total_enrichments"] += 1
        m["failed_enrichments"] += 1
        m["errors_by_provider"][provider] = m["errors_by_provider"].get(provider, 0) + 1

        error_rate = m["errors_by_provider"][provider] / m["total_enrichments"]
        if error_rate > 0.1:
            self.create_alert(
                "high_error_rate",
                {"provider": provider, "error_rate": round(error_rate * 100, 2), "error": str(error)},
            )

    def record_cache(self, hit: bool) -> None:
        m = self.store.metrics
        m["cache_hit_rate"] = m["cache_hit_rate"] * (1 - CACHE_EMA_FACTOR) + (CACHE_EMA_FACTOR if hit else 0.0)

    def record_trigger(self, trigger_id: str, success: bool) -> None:
        stats = self.store.metrics["enrichment_triggers"].setdefault(
            trigger_id, {"total_executions": 0, "successful_executions": 0, "last_execution": None}
        )
        stats["total_executions"] += 1
        stats["last_execution"] = self._clock().isoformat()
        if success:
            stats["successful_executions"] += 1

    def create_alert(self, alert_type: str, data: dict, severity: str = "warning") -> dict:
        alert = {
            "id": f"alert_{uuid.uuid4().hex[:12]}",
            "type": alert_type,
            "severity": severity,
            "data": data,
            "timestamp": self._clock().isoformat(),
            "acknowledged": False,
        }
        self.store.alerts.append(alert)
        if len(self.store.alerts) > ALERT_LIMIT:
            del self.store.alerts[:-ALERT_LIMIT]
        logger.warning("monitoring.alert", extra={"alert_type": alert_type, "severity": severity})
        return alert

    def acknowledge_alert(self, alert_id: str, user_id: Any = None) -> bool:
        for alert in self.store.alerts:
            if alert["id"] == alert_id:
                alert["acknowledged"] = True
                alert["acknowledged_by"] = user_id
                alert["acknowledged_at"] = self._clock().isoformat()
                return True
        return False

    def _check_result_alerts(self, result: EnrichmentResult) -> None:
        if result.quality_score < 70:
            self.create_alert(
                "low_quality_score",
                {"lead_id": result.lead_id, "quality_score": result.quality_score, "sources": list(result.sources)},
            )
        if result.confidence < 0.6:
            self.create_alert(
                "low_confidence",
                {"lead_id": result.lead_id, "confidence": result.confidence, "sources": list(result.sources)},
                severity="info",
            )
        if not result.sources:
            self.create_alert("no_data_sources", {"lead_id": result.lead_id, "enrichment_id": result.enrichment_id})

    def average_quality(self) -> float | None:
        if not self.store.history:
            return None
        return _average([h["quality_score"] for h in self.store.history])

    def error_rate(self) -> float:
        m = self.store.metrics
        return m["failed_enrichments"] / m["total_enrichments"] if m["total_enrichments"] else 0.0

    def overall_health(self) -> str:
        error_rate = self.error_rate()
        # No completed runs yet means no quality signal, not bad quality.
        quality = self.average_quality()
        critical_alerts = [a for a in self.store.alerts if a["severity"] == "critical" and not a["acknowledged"]]
        if critical_alerts or error_rate > 0.2 or (quality is not None and quality < 70):
            return "critical"
        if error_rate > 0.1 or (quality is not None and quality < 80):
            return "warning"
        return "healthy"

    def calculate_trends(self) -> dict:
        history = self.store.history
        if len(history) < 10:
            return {"message": "Insufficient data for trends"}
        recent = history[-50:] if len(history) > 50 else history[len(history) // 2:]
        older = history[-100:-50] if len(history) > 50 else history[: len(history) // 2]

        recent_q = _average([h["quality_score"] for h in recent])
        older_q = _average([h["quality_score"] for h in older])
        recent_t = _average([h["processing_ms"] for h in recent])
        older_t = _average([h["processing_ms"] for h in older])
        return {
            "quality_score_trend": "improving" if recent_q > older_q else "declining",
            "quality_score_change_pct": round((recent_q - older_q) / older_q * 100, 2) if older_q else None,
            "processing_time_trend": "improving" if recent_t < older_t else "declining",
            "processing_time_change_pct": round((recent_t - older_t) / older_t * 100, 2) if older_t else None,
        }

    def get_analytics(self, filters: dict | None = None) -> dict:
        m = self.store.metrics
        total = m["total_enrichments"]
        quality = self.average_quality()
        return {
            "summary": {
                "total_enrichments": total,
                "success_rate_pct": round(m["successful_enrichments"] / total * 100, 2) if total else 0.0,
                "average_quality_score": round(quality, 2) if quality is not None else None,
                "average_processing_ms": round(m["average_processing_ms"]),
                "cache_hit_rate_pct": round(m["cache_hit_rate"] * 100, 2),
            },
            "quality_distribution": dict(m["quality_score_distribution"]),
            "provider_performance": dict(m["provider_health"]),
            "trigger_performance": dict(m["enrichment_triggers"]),
            "trends": self.calculate_trends(),
            "filters": filters or {},
            "generated_at": self._clock().isoformat(),
        }

    async def provider_status(self, providers: dict) -> dict:
        statuses = {}
        for source, provider in providers.items():
            checked_at = self._clock().isoformat()
            try:
                health = await provider.get_health_status()
                statuses[source] = {
                    "status": health.get("overall", "error"),
                    "last_checked": checked_at,
                    "details": health.get("providers", {}),
                }
            except Exception as exc:
                statuses[source] = {"status": "error", "error": str(exc), "last_checked": checked_at}
        return statuses

    async def get_status(self, providers: dict | None = None, provider_status: dict | None = None) -> dict:
        if provider_status is None:
            provider_status = await self.provider_status(providers or {})
        return {
            "overall": self.overall_health(),
            "metrics": dict(self.store.metrics),
            "alerts": self.store.alerts[-10:],
            "recent_performance": self.store.history[-20:],
            "provider_status": provider_status,
            "timestamp": self._clock().isoformat(),
        }

    async def run_health_check(self, providers: dict | None = None) -> dict:
        status = await self.get_status(providers)
        if status["overall"] == "critical":
            self.create_alert(
                "system_health_critical",
                {"overall_status": "critical", "error_rate": round(self.error_rate(), 4)},
                severity="critical",
            )
        elif status["overall"] == "warning":
            self.create_alert(
                "system_health_warning",
                {"overall_status": "warning", "average_quality_score": self.average_quality()},
            )
        return status
