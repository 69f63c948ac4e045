"""
Résolution de la destination d'un manifeste par code compagnie.
- Table par défaut (AA, DL, UA) surchargée/complétée par AIRLINE_MANIFEST_EMAILS.
- Code inconnu ou vide: repli sur la boîte opérations (MANIFEST_DEFAULT_EMAIL).
"""
from typing import Dict, Optional

from bag2go.config import AIRLINE_MANIFEST_EMAILS, MANIFEST_DEFAULT_EMAIL

DEFAULT_AIRLINE_EMAILS: Dict[str, str] = {
    "AA": "aa.manifests+dev@bag2go.dev",
    "DL": "dl.manifests+dev@bag2go.dev",
    "UA": "ua.manifests+dev@bag2go.dev",
}


class AirlineDestinations:
    def __init__(self, overrides: Optional[Dict[str, str]] = None, default: str = MANIFEST_DEFAULT_EMAIL):
        self.default = default
        self.emails: Dict[str, str] = dict(DEFAULT_AIRLINE_EMAILS)
        self.emails.update({k.upper(): v for k, v in (overrides or {}).items()})

    def resolve(self, airline_code: Optional[str]) -> str:
        return self.emails.get((airline_code or "").strip().upper()) or self.default

    def is_known(self, airline_code: Optional[str]) -> bool:
        return (airline_code or "").strip().upper() in self.emails


def default_destinations() -> AirlineDestinations:
    return AirlineDestinations(overrides=AIRLINE_MANIFEST_EMAILS, default=MANIFEST_DEFAULT_EMAIL)
