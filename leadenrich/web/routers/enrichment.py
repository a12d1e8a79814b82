"""Enrichment, consent, privacy and monitoring routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from leadenrich.enrich.service import EnrichmentService
from leadenrich.enrich.triggers import EnrichmentTriggers
from leadenrich.errors import InvalidLeadInput
from leadenrich.web.common import error_response, get_service, get_triggers, json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrichment")


async def _enrich_after_consent(triggers: EnrichmentTriggers, lead_id: int) -> None:
    lead = await triggers.service.lead_store.get_by_id(lead_id)
    if lead is not None:
        await triggers.on_consent_granted(lead)


# ── Enrichment ─────────────────────────────────────────────────────────────

@router.post("/leads/batch-enrich")
async def batch_enrich(request: Request, service: EnrichmentService = Depends(get_service)):
    try:
        body = await json_body(request)
        lead_ids = body.get("lead_ids")
        if not isinstance(lead_ids, list) or not lead_ids:
            raise InvalidLeadInput("lead_ids must be a non-empty list")
        summary = await service.enrich_leads_batch(
            lead_ids,
            force_refresh=bool(body.get("force_refresh")),
            sources=body.get("sources"),
        )
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": summary}


@router.post("/leads/{lead_id}/enrich")
async def enrich_lead(lead_id: int, request: Request, service: EnrichmentService = Depends(get_service)):
    try:
        body = await json_body(request)
        result = await service.enrich_lead(
            lead_id,
            force_refresh=bool(body.get("force_refresh")),
            sources=body.get("sources"),
        )
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": result.to_dict()}


@router.get("/leads/{lead_id}/status")
async def enrichment_status(lead_id: int, service: EnrichmentService = Depends(get_service)):
    try:
        status = await service.get_enrichment_status(lead_id)
        status["history"] = await service.get_enrichment_history(lead_id)
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": status}


@router.delete("/leads/{lead_id}/data")
async def delete_enrichment_data(lead_id: int, service: EnrichmentService = Depends(get_service)):
    try:
        result = await service.delete_enrichment_data(lead_id)
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": result}


# ── Consent ────────────────────────────────────────────────────────────────

@router.post("/consent/{lead_id}/grant")
async def grant_consent(
    lead_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    service: EnrichmentService = Depends(get_service),
    triggers: EnrichmentTriggers = Depends(get_triggers),
):
    try:
        body = await json_body(request)
        body.setdefault("ip_address", request.client.host if request.client else None)
        body.setdefault("user_agent", request.headers.get("user-agent"))
        record = await service.grant_consent(lead_id, body)
    except Exception as exc:
        return error_response(exc)
    background_tasks.add_task(_enrich_after_consent, triggers, lead_id)
    return {"ok": True, "data": record}


@router.post("/consent/{lead_id}/withdraw")
async def withdraw_consent(lead_id: int, request: Request, service: EnrichmentService = Depends(get_service)):
    try:
        body = await json_body(request)
        await service.withdraw_consent(lead_id, body.get("reason") or "user_request")
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": {"lead_id": lead_id, "withdrawn": True}}


@router.get("/consent/{lead_id}/status")
async def consent_status(lead_id: int, service: EnrichmentService = Depends(get_service)):
    try:
        status = await service.get_consent_status(lead_id)
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": status}


# ── Privacy ────────────────────────────────────────────────────────────────

@router.post("/privacy/{lead_id}/delete")
async def privacy_delete(lead_id: int, request: Request, service: EnrichmentService = Depends(get_service)):
    try:
        body = await json_body(request)
        result = await service.handle_deletion_request(lead_id, (body.get("type") or "gdpr").lower())
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": result}


@router.get("/privacy/{lead_id}/export")
async def privacy_export(lead_id: int, service: EnrichmentService = Depends(get_service)):
    try:
        package = await service.export_lead_data(lead_id)
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": package}


@router.get("/compliance/{lead_id}/report")
async def compliance_report(lead_id: int, service: EnrichmentService = Depends(get_service)):
    try:
        report = await service.get_compliance_report(lead_id)
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": report}


# ── Monitoring ─────────────────────────────────────────────────────────────

@router.get("/health")
async def health(service: EnrichmentService = Depends(get_service)):
    try:
        status = await service.get_health()
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": status}


@router.get("/analytics")
async def analytics(request: Request, service: EnrichmentService = Depends(get_service)):
    try:
        data = await service.get_analytics(dict(request.query_params))
    except Exception as exc:
        return error_response(exc)
    return {"ok": True, "data": data}
