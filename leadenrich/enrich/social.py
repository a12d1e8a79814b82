"""Professional and social profile enrichment (LinkedIn, FullContact, Hunter, Clearbit)."""

from __future__ import annotations

import logging
import time

import httpx

from leadenrich.config import settings
from leadenrich.enrich.base import EnrichmentProvider, Vendor
from leadenrich.errors import ProviderError
from leadenrich.schemas import LeadRecord

logger = logging.getLogger(__name__)

LINKEDIN_HEADERS = {"X-Restli-Protocol-Version": "2.0.0"}
LINKEDIN_PROJECTION = "(id,vanityName,headline,industry,location,positions,numConnections)"


def default_social_vendors() -> list[Vendor]:
    return [
        Vendor(
            "linkedin",
            settings.LINKEDIN_BASE_URL,
            "basic",
            {"client_id": settings.LINKEDIN_CLIENT_ID, "client_secret": settings.LINKEDIN_CLIENT_SECRET},
            health_path="/me",
        ),
        Vendor("fullcontact", settings.FULLCONTACT_BASE_URL, "bearer", {"api_key": settings.FULLCONTACT_API_KEY}),
        Vendor("hunter", settings.HUNTER_BASE_URL, "api_key_query", {"api_key": settings.HUNTER_API_KEY}, "/account"),
        Vendor("clearbit", settings.CLEARBIT_BASE_URL, "bearer", {"api_key": settings.CLEARBIT_API_KEY}),
    ]


def _empty_profile() -> dict:
    return {
        "linkedin_profile": None,
        "professional_title": None,
        "company": None,
        "industry": None,
        "connections": None,
        "email_verified": False,
        "profile_verified": False,
        "social_profiles": [],
        "location": None,
    }


class SocialMediaProvider(EnrichmentProvider):
    name = "social_media"
    source = "social"

    def __init__(self, vendors: list[Vendor] | None = None, primary_vendor: str | None = None, **kwargs) -> None:
        kwargs.setdefault("rate_limit_per_min", settings.SOCIAL_RATE_LIMIT_PER_MIN)
        kwargs.setdefault("timeout_seconds", settings.SOCIAL_TIMEOUT_SECONDS)
        super().__init__(
            vendors if vendors is not None else default_social_vendors(),
            primary_vendor or settings.SOCIAL_PRIMARY_VENDOR,
            **kwargs,
        )
        self._linkedin_token: tuple[str, float] | None = None
        self._fetchers = {
            "linkedin": self._from_linkedin,
            "fullcontact": self._from_fullcontact,
            "hunter": self._from_hunter,
            "clearbit": self._from_clearbit,
        }

    async def fetch(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict:
        fetcher = self._fetchers.get(vendor.name)
        if fetcher is None:
            raise ProviderError(None, f"no social API mapping for {vendor.name}", provider=vendor.name)
        profile = await fetcher(vendor, lead, client)
        if not profile:
            raise ProviderError(404, "no matching profile", provider=vendor.name)
        output = _empty_profile()
        output.update({k: v for k, v in profile.items() if v is not None})
        output["email"] = lead.email
        return output

    async def _linkedin_access_token(self, vendor: Vendor, client: httpx.AsyncClient) -> str:
        if self._linkedin_token and self._linkedin_token[1] > time.monotonic():
            return self._linkedin_token[0]
        resp = await client.post(
            vendor.url("/oauth/accessToken"),
            params={"grant_type": "client_credentials", "scope": "r_liteprofile,r_emailaddress"},
            headers=vendor.auth_headers(),
        )
        resp.raise_for_status()
        body = resp.json()
        token = body.get("access_token")
        if not token:
            raise ProviderError(401, "LinkedIn token exchange returned no token", provider=vendor.name)
        self._linkedin_token = (token, time.monotonic() + float(body.get("expires_in") or 0))
        return token

    async def _from_linkedin(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict | None:
        token = await self._linkedin_access_token(vendor, client)
        headers = {"Authorization": f"Bearer {token}", **LINKEDIN_HEADERS}
        params = {"keywords": lead.name or ""}
        if lead.email:
            params["email"] = lead.email
        resp = await client.get(vendor.url("/people/search"), params=params, headers=headers)
        resp.raise_for_status()
        elements = resp.json().get("elements") or []
        if not elements:
            return None

        person_id = elements[0].get("id")
        resp = await client.get(
            vendor.url(f"/people/{person_id}"),
            params={"projection": LINKEDIN_PROJECTION},
            headers=headers,
        )
        resp.raise_for_status()
        profile = resp.json()
        positions = profile.get("positions") or []
        return {
            "linkedin_profile": f"https://linkedin.com/in/{profile.get('vanityName') or person_id}",
            "professional_title": profile.get("headline"),
            "company": positions[0].get("companyName") if positions else None,
            "industry": profile.get("industry"),
            "connections": profile.get("numConnections") or 0,
            "profile_verified": True,
            "location": profile.get("location"),
        }

    async def _from_fullcontact(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict | None:
        resp = await client.post(
            vendor.url("/person.enrich"),
            json={"email": lead.email, "name": lead.name},
            headers=vendor.auth_headers(),
        )
        resp.raise_for_status()
        data = resp.json() or {}
        if not data:
            return None
        employment = (data.get("employment") or [{}])[0]
        return {
            "professional_title": data.get("title") or employment.get("title"),
            "company": data.get("organization") or employment.get("name"),
            "email_verified": bool(((data.get("contactInfo") or {}).get("email") or {}).get("isValid")),
            "social_profiles": data.get("socialProfiles") or [],
            "location": (data.get("demographics") or {}).get("location") or data.get("location"),
            "linkedin_profile": data.get("linkedin"),
        }

    async def _from_hunter(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict | None:
        if not lead.email:
            return None
        resp = await client.get(
            vendor.url("/email-verifier"),
            params={"email": lead.email, **vendor.auth_params()},
            headers=vendor.auth_headers(),
        )
        resp.raise_for_status()
        data = resp.json().get("data") or {}
        if not data:
            return None
        return {
            "email_verified": data.get("result") == "deliverable",
            "email_score": data.get("score"),
            "domain_status": "disposable" if data.get("disposable") else "valid",
        }

    async def _from_clearbit(self, vendor: Vendor, lead: LeadRecord, client: httpx.AsyncClient) -> dict | None:
        if not lead.email:
            return None
        resp = await client.get(
            vendor.url("/people/find"),
            params={"email": lead.email},
            headers=vendor.auth_headers(),
        )
        resp.raise_for_status()
        data = resp.json() or {}
        if not data:
            return None
        employment = data.get("employment") or {}
        handles = [
            {"network": network, "handle": (data.get(network) or {}).get("handle")}
            for network in ("linkedin", "twitter", "github")
            if (data.get(network) or {}).get("handle")
        ]
        linkedin = (data.get("linkedin") or {}).get("handle")
        return {
            "professional_title": employment.get("title"),
            "company": employment.get("name"),
            "social_profiles": handles,
            "location": data.get("location"),
            "linkedin_profile": f"https://linkedin.com/{linkedin}" if linkedin else None,
        }

    def compute_confidence(self, output: dict) -> float:
        confidence = 0.0
        if output.get("linkedin_profile"):
            confidence += 0.4
        if output.get("professional_title"):
            confidence += 0.15
        if output.get("company"):
            confidence += 0.15
        if output.get("email_verified"):
            confidence += 0.1
        profiles = output.get("social_profiles") or []
        if profiles:
            confidence += min(len(profiles) * 0.05, 0.15)
        if output.get("profile_verified"):
            confidence += 0.1
        return min(confidence, 1.0)
