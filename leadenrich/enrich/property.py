"""Property ownership and valuation enrichment (Zillow, Realtor, public records)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from leadenrich.config import settings
from leadenrich.enrich.base import EnrichmentProvider, Vendor, parse_address, parse_name
from leadenrich.errors import ProviderError
from leadenrich.schemas import LeadRecord

logger = logging.getLogger(__name__)


def _zillow_search(payload: dict) -> list[dict]:
    results = ((payload or {}).get("response") or {}).get("results") or []
    return [{"id": r.get("zpid"), "address": r.get("address"), "price": r.get("zestimate")} for r in results]


def _zillow_details(payload: dict) -> dict:
    prop = (payload or {}).get("response") or {}
    return {
        "ownership_status": "owned" if prop.get("ownerName") else "unknown",
        "property_value": prop.get("zestimate"),
        "mortgage_balance": prop.get("mortgageBalance"),
        "property_type": prop.get("useCode"),
        "ownership_verified": bool(prop.get("ownerName")),
    }


def _realtor_search(payload: dict) -> list[dict]:
    return [
        {"id": p.get("id"), "address": p.get("address"), "price": p.get("price")}
        for p in (payload or {}).get("properties") or []
    ]


def _realtor_details(payload: dict) -> dict:
    prop = (payload or {}).get("property") or {}
    return {
        "ownership_status": prop.get("ownership") or "unknown",
        "property_value": prop.get("price"),
        "mortgage_balance": prop.get("mortgageBalance"),
        "property_type": prop.get("propertyType"),
        "ownership_verified": bool(prop.get("owner")),
    }


def _public_records_search(payload: dict) -> list[dict]:
    # Ownership search already carries the detail fields.
    return [
        {
            "id": p.get("propertyId"),
            "address": p.get("address"),
            "price": p.get("assessedValue"),
            "ownership_status": "owned" if p.get("ownerName") else "unknown",
            "mortgage_balance": p.get("mortgageBalance"),
            "property_type": p.get("propertyType"),
            "ownership_verified": bool(p.get("ownerName")),
        }
        for p in (payload or {}).get("properties") or []
    ]


@dataclass(frozen=True)
class _PropertyApi:
    search_path: str
    search: Callable[[dict], list[dict]]
    details_path: str | None = None
    details: Callable[[dict], dict] | None = None


PROPERTY_APIS: dict[str, _PropertyApi] = {
    "zillow": _PropertyApi("/GetSearchResults.htm", _zillow_search, "/GetUpdatedPropertyDetails.htm", _zillow_details),
    "realtor": _PropertyApi("/properties/search", _realtor_search, "/properties/{property_id}", _realtor_details),
    "public_records": _PropertyApi("/ownership/search", _public_records_search),
}

TRANSACTIONS_PATH = "/transactions/search"


def default_property_vendors() -> list[Vendor]:
    return [
        Vendor("zillow", settings.ZILLOW_BASE_URL, "api_key_query", {"api_key": settings.ZILLOW_API_KEY}),
        Vendor("realtor", settings.REALTOR_BASE_URL, "api_key_query", {"api_key": settings.REALTOR_API_KEY}),
        Vendor(
            "public_records",
            settings.PUBLIC_RECORDS_BASE_URL,
            "api_key_query",
            {"api_key": settings.PUBLIC_RECORDS_API_KEY},
        ),
    ]


def build_search_criteria(lead: LeadRecord) -> dict:
    criteria: dict[str, str] = {}
    if lead.address:
        criteria.update(parse_address(lead.address))
    if lead.location:
        criteria["city"] = lead.location
    if lead.name:
        criteria.update(parse_name(lead.name))
    return {k: v for k, v in criteria.items() if v}


def _dedupe(candidates: list[dict]) -> list[dict]:
    seen = set()
    unique = []
    for candidate in candidates:
        address = candidate.get("address")
        key = str(address).lower() if address else f"id:{candidate.get('id')}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


class PropertyDataProvider(EnrichmentProvider):
    name = "property_data"
    source = "property"

    def __init__(self, vendors: list[Vendor] | None = None, primary_vendor: str | None = None, **kwargs) -> None:
        kwargs.setdefault("rate_limit_per_min", settings.PROPERTY_RATE_LIMIT_PER_MIN)
        kwargs.setdefault("timeout_seconds", settings.PROPERTY_TIMEOUT_SECONDS)
        super().__init__(
            vendors if vendors is not None else default_property_vendors(),
            primary_vendor or settings.PROPERTY_PRIMARY_VENDOR,
            **kwargs,
        )

    async def fetch(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict:
        api = PROPERTY_APIS.get(vendor.name)
        if api is None:
            raise ProviderError(None, f"no property API mapping for {vendor.name}", provider=vendor.name)

        resp = await client.get(
            vendor.url(api.search_path),
            params={**build_search_criteria(lead), **vendor.auth_params()},
            headers=vendor.auth_headers(),
        )
        resp.raise_for_status()
        candidates = _dedupe(api.search(resp.json()))
        if not candidates:
            raise ProviderError(404, "no properties found", provider=vendor.name)

        top = candidates[0]
        details = dict(top)
        if api.details_path and top.get("id") is not None:
            details.update(await self._details(vendor, api, top["id"], client))
        transactions = await self._transactions(top.get("id"), client)

        return {
            "properties_found": len(candidates),
            "property_id": top.get("id"),
            "address": top.get("address"),
            "ownership_status": details.get("ownership_status") or "unknown",
            "property_value": details.get("property_value") or top.get("price"),
            "mortgage_balance": details.get("mortgage_balance"),
            "property_type": details.get("property_type"),
            "ownership_verified": bool(details.get("ownership_verified")),
            "transaction_history": transactions,
            "last_transaction_date": transactions[0].get("date") if transactions else None,
        }

    async def _details(self, vendor: Vendor, api: _PropertyApi, property_id, client: httpx.AsyncClient) -> dict:
        path = api.details_path.format(property_id=property_id)
        params = dict(vendor.auth_params())
        if "{property_id}" not in api.details_path:
            params["zpid"] = property_id
        try:
            resp = await client.get(vendor.url(path), params=params, headers=vendor.auth_headers())
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("property.details_failed", extra={"vendor": vendor.name, "error": str(exc)})
            return {}
        return {k: v for k, v in api.details(resp.json()).items() if v is not None}

    async def _transactions(self, property_id, client: httpx.AsyncClient) -> list[dict]:
        records = next((v for v in self.vendors if v.name == "public_records"), None)
        if property_id is None or records is None or not records.is_configured():
            return []
        try:
            resp = await client.get(
                records.url(TRANSACTIONS_PATH),
                params={"property_id": property_id, **records.auth_params()},
                headers=records.auth_headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("property.transactions_failed", extra={"error": str(exc)})
            return []
        transactions = [
            {
                "date": t.get("date"),
                "type": t.get("type"),
                "amount": t.get("amount"),
                "buyer": t.get("buyer"),
                "seller": t.get("seller"),
            }
            for t in resp.json().get("transactions") or []
        ]
        return sorted(transactions, key=lambda t: str(t.get("date") or ""), reverse=True)

    def compute_confidence(self, output: dict) -> float:
        confidence = 0.0
        found = output.get("properties_found") or 0
        if found > 0:
            confidence += 0.3
        if found > 1:
            confidence += 0.2
        if output.get("ownership_status") not in (None, "unknown"):
            confidence += 0.2
        if output.get("property_value"):
            confidence += 0.15
        if output.get("ownership_verified"):
            confidence += 0.15
        history = output.get("transaction_history") or []
        if history:
            confidence += 0.1
        if len(history) > 2:
            confidence += 0.1
        return min(confidence, 1.0)
