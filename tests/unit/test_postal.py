"""
Unit tests for the postal code lookup
"""

from unittest.mock import Mock

import pytest

from urban_climate.errors import DashboardError
from urban_climate.postal import lookup_postal_code, normalize_cep


def _session(payload, status_code=200):
    resp = Mock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.json.return_value = payload
    session = Mock()
    session.get.return_value = resp
    return session


class TestPostalCode:
    def test_normalize(self):
        assert normalize_cep("13083-970") == "13083970"

    def test_normalize_invalid(self):
        with pytest.raises(DashboardError, match="expected 8 digits"):
            normalize_cep("1234")

    def test_lookup(self):
        session = _session({
            "cep": "13083-970",
            "logradouro": "Rua Sérgio Buarque de Holanda",
            "bairro": "Cidade Universitária",
            "localidade": "Campinas",
            "uf": "SP",
            "ibge": "3509502",
        })
        address = lookup_postal_code("13083-970", session=session)

        assert address.localidade == "Campinas"
        assert address.uf == "SP"
        assert session.get.call_args[0][0] == "https://viacep.com.br/ws/13083970/json/"

    def test_unknown(self):
        with pytest.raises(DashboardError, match="not found"):
            lookup_postal_code("99999999", session=_session({"erro": "true"}))

    def test_http_error(self):
        with pytest.raises(DashboardError, match="Status: 400"):
            lookup_postal_code("99999999", session=_session({}, status_code=400))
