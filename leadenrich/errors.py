"""Error taxonomy for the enrichment pipeline."""

from __future__ import annotations


class EnrichmentError(Exception):
    """Base class for every error raised by the enrichment core."""


class LeadNotFound(EnrichmentError):
    def __init__(self, lead_id) -> None:
        super().__init__(f"Lead {lead_id} not found")
        self.lead_id = lead_id


class InvalidLeadInput(EnrichmentError):
    """The lead lacks the identity data needed to enrich it."""


class ComplianceDenied(EnrichmentError):
    """Consent is missing, expired, withdrawn or jurisdictionally insufficient."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RateLimitExceeded(EnrichmentError):
    def __init__(self, provider: str, limit: int) -> None:
        super().__init__(f"Rate limit exceeded for {provider} ({limit}/min)")
        self.provider = provider
        self.limit = limit


class ProviderError(EnrichmentError):
    """A vendor call (or every vendor of a provider) failed."""

    def __init__(self, status_code: int | None, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        prefix = f"HTTP {self.status_code}: " if self.status_code else ""
        return f"{prefix}{self.message}"


class ValidationFailure(EnrichmentError):
    """Validation could not run on the enrichment draft."""


class CacheFailure(EnrichmentError):
    """A cache backend read or write failed."""


class CodecError(EnrichmentError):
    """Sensitive payload could not be encrypted or decrypted."""


class BatchTooLarge(EnrichmentError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Maximum {limit} leads can be processed in a single batch (got {size})")
        self.size = size
        self.limit = limit
