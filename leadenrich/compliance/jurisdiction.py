"""Location to privacy-framework classification.

The keyword classifier is a heuristic over free-text address/location strings,
not geocoding. Swap in another ``JurisdictionClassifier`` when a real address
service is available.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

GDPR = "gdpr"
CCPA = "ccpa"

EU_COUNTRIES = (
    "austria", "belgium", "bulgaria", "croatia", "cyprus", "czech republic", "czechia", "denmark",
    "estonia", "finland", "france", "germany", "greece", "hungary", "ireland", "italy", "latvia",
    "lithuania", "luxembourg", "malta", "netherlands", "poland", "portugal", "romania", "slovakia",
    "slovenia", "spain", "sweden", "iceland", "liechtenstein", "norway",
)

EU_CITIES = (
    "berlin", "munich", "hamburg", "frankfurt", "paris", "lyon", "marseille", "madrid", "barcelona",
    "rome", "milan", "amsterdam", "rotterdam", "brussels", "vienna", "dublin", "lisbon", "porto",
    "stockholm", "copenhagen", "helsinki", "warsaw", "krakow", "prague", "budapest", "athens",
    "bucharest", "sofia", "zagreb", "oslo", "luxembourg city",
)

CALIFORNIA_CITIES = (
    "los angeles", "san francisco", "san diego", "san jose", "sacramento", "oakland", "fresno",
    "long beach", "bakersfield", "anaheim", "santa ana", "riverside", "irvine", "berkeley",
    "palo alto", "santa monica", "pasadena", "santa barbara", "san mateo", "mountain view",
)

_CA_TOKEN = re.compile(r"\bCA\b")


def _contains_word(text: str, phrase: str) -> bool:
    return re.search(r"\b%s\b" % re.escape(phrase), text) is not None


class JurisdictionClassifier(ABC):
    @abstractmethod
    def classify(self, location: str | None) -> frozenset[str]:
        """Return the privacy frameworks ({"gdpr", "ccpa"}) applicable to a location."""


class KeywordJurisdictionClassifier(JurisdictionClassifier):
    def __init__(
        self,
        eu_terms: tuple[str, ...] = EU_COUNTRIES + EU_CITIES,
        california_terms: tuple[str, ...] = ("california",) + CALIFORNIA_CITIES,
    ) -> None:
        self.eu_terms = eu_terms
        self.california_terms = california_terms

    def is_california(self, location: str | None) -> bool:
        if not location:
            return False
        if _CA_TOKEN.search(location):
            return True
        lowered = location.lower()
        return any(_contains_word(lowered, term) for term in self.california_terms)

    def is_eu(self, location: str | None) -> bool:
        if not location:
            return False
        lowered = location.lower()
        return any(_contains_word(lowered, term) for term in self.eu_terms)

    def classify(self, location: str | None) -> frozenset[str]:
        tags = set()
        if self.is_eu(location):
            tags.add(GDPR)
        if self.is_california(location):
            tags.add(CCPA)
        return frozenset(tags)
