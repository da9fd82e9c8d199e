import re
from typing import Optional

import requests
from pydantic import BaseModel

from .config import get_settings
from .errors import DashboardError

VIACEP_URL = "https://viacep.com.br/ws"


class Address(BaseModel):
    cep: str
    logradouro: str = ""
    bairro: str = ""
    localidade: str
    uf: str


def normalize_cep(cep: str) -> str:
    digits = re.sub(r"\D", "", cep or "")
    if len(digits) != 8:
        raise DashboardError(f"Invalid postal code '{cep}': expected 8 digits")
    return digits


def lookup_postal_code(cep: str, session: Optional[requests.Session] = None) -> Address:
    """Resolve a Brazilian postal code (CEP) to its locality and state."""
    digits = normalize_cep(cep)
    http = session or requests
    try:
        resp = http.get(f"{VIACEP_URL}/{digits}/json/", timeout=get_settings().http_timeout)
    except requests.RequestException as e:
        raise DashboardError(f"Failed to contact the postal code service: {e}") from e

    if not resp.ok:
        raise DashboardError(f"Postal code lookup failed for {digits}. Status: {resp.status_code}")
    data = resp.json()
    if data.get("erro"):
        raise DashboardError(f"Postal code {digits} not found")
    return Address(**{k: v for k, v in data.items() if k in Address.model_fields})
