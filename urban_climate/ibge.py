"""
IBGE Service - Brazilian government statistics.
Looks up a municipality by name and fetches its population and area for the
2022 reference year.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from .config import get_settings
from .errors import DashboardError

logger = logging.getLogger(__name__)

IBGE_URL = "https://servicodados.ibge.gov.br/api"
REFERENCE_YEAR = "2022"
NOT_AVAILABLE = "não disponível"

# (aggregate, variable) pairs of the SIDRA aggregates API
POPULATION_AGGREGATE = ("6579", "9324")
AREA_AGGREGATE = ("1301", "615")


def split_municipality(name: str) -> Tuple[str, Optional[str]]:
    """
    Split a front-end label like "Campinas - SP" into name and UF.
    Labels without a UF suffix are returned unchanged.
    """
    parts = [p.strip() for p in name.split(" - ")]
    if len(parts) >= 2 and parts[-1]:
        return parts[0], parts[-1].upper()
    return parts[0], None


def _uf_of(municipality: Dict[str, Any]) -> Optional[str]:
    try:
        return municipality["microrregiao"]["mesorregiao"]["UF"]["sigla"]
    except (KeyError, TypeError):
        return None


class IbgeClient:
    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.session = session or requests.Session()
        self.timeout = timeout or get_settings().http_timeout

    def _get(self, path: str) -> requests.Response:
        try:
            return self.session.get(f"{IBGE_URL}{path}", timeout=self.timeout)
        except requests.RequestException as e:
            raise DashboardError(f"Failed to contact IBGE: {e}") from e

    # ------------ Municipality lookup ------------
    def get_municipality(self, name: str, uf: Optional[str] = None) -> Dict[str, Any]:
        """
        Direct lookup first; when it fails or comes back empty, scan the full
        municipality list for a case-insensitive name match (preferring the
        given UF when several municipalities share a name).
        """
        r = self._get(f"/v1/localidades/municipios/{name}")
        if r.ok:
            data = r.json()
            if isinstance(data, list):
                data = data[0] if data else None
            if data and data.get("id") and (uf is None or _uf_of(data) == uf):
                return data

        logger.info("IBGE direct lookup missed '%s', scanning full municipality list", name)
        r = self._get("/v1/localidades/municipios")
        if not r.ok:
            raise DashboardError(f"Failed to fetch city data from IBGE for {name}")

        wanted = name.casefold()
        candidates = [c for c in r.json() if str(c.get("nome", "")).casefold() == wanted]
        if uf:
            candidates = [c for c in candidates if _uf_of(c) == uf] or candidates
        if not candidates:
            raise DashboardError(f"Failed to fetch city data from IBGE for {name}")

        city_id = candidates[0]["id"]
        r = self._get(f"/v1/localidades/municipios/{city_id}")
        if not r.ok:
            raise DashboardError(f"Failed to fetch city data from IBGE for {name}")
        return r.json()

    # ------------ Aggregates ------------
    def _aggregate_value(self, aggregate: Tuple[str, str], city_id: Any) -> str:
        table, variable = aggregate
        r = self._get(
            f"/v3/agregados/{table}/periodos/{REFERENCE_YEAR}/variaveis/{variable}"
            f"?localidades=N6[{city_id}]"
        )
        if not r.ok:
            return NOT_AVAILABLE
        try:
            serie = r.json()[0]["resultados"][0]["series"][0]["serie"]
        except (IndexError, KeyError, TypeError, ValueError):
            return NOT_AVAILABLE
        return serie.get(REFERENCE_YEAR) or NOT_AVAILABLE

    def get_population(self, city_id: Any) -> str:
        return self._aggregate_value(POPULATION_AGGREGATE, city_id)

    def get_area(self, city_id: Any) -> str:
        return self._aggregate_value(AREA_AGGREGATE, city_id)

    def get_city_record(self, municipality_name: str) -> Dict[str, Any]:
        """IBGE municipality record with `population` and `area` merged in."""
        name, uf = split_municipality(municipality_name)
        data = self.get_municipality(name, uf)
        return {
            **data,
            "population": self.get_population(data["id"]),
            "area": self.get_area(data["id"]),
        }
