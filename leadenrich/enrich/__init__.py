"""Enrichment providers, pipeline and service exports."""

from .base import EnrichmentProvider
from .credit import CreditReportingProvider
from .pipeline import EnrichmentPipeline
from .property import PropertyDataProvider
from .service import EnrichmentService
from .social import SocialMediaProvider
from .triggers import EnrichmentTriggers

__all__ = [
    "CreditReportingProvider",
    "EnrichmentPipeline",
    "EnrichmentProvider",
    "EnrichmentService",
    "EnrichmentTriggers",
    "PropertyDataProvider",
    "SocialMediaProvider",
]
