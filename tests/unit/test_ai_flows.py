"""
Unit tests for the generative AI flows (the genai client is mocked)
"""

import base64
import json
from unittest.mock import MagicMock, Mock

import pytest
from google.genai import types

from urban_climate import ai_flows
from urban_climate.errors import DashboardError

PNG_URI = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()


def _client(payload):
    client = MagicMock()
    client.models.generate_content.return_value = Mock(
        text=payload if isinstance(payload, str) else json.dumps(payload)
    )
    return client


def _diagnose_input():
    return ai_flows.DiagnoseInput(
        ndviDataUri=PNG_URI,
        lstDataUri=PNG_URI,
        populationDensityData=PNG_URI,
        infrastructureData=PNG_URI,
        municipalityDescription="Cidade do interior paulista.",
    )


class TestDataUriPart:
    def test_decodes_payload(self):
        part = ai_flows.data_uri_to_part(PNG_URI)
        assert isinstance(part, types.Part)
        assert part.inline_data.data == b"png-bytes"
        assert part.inline_data.mime_type == "image/png"

    def test_rejects_plain_url(self):
        with pytest.raises(DashboardError, match="data URI"):
            ai_flows.data_uri_to_part("https://example.com/a.png")


class TestDiagnose:
    def test_structured_output(self):
        client = _client({
            "summary": "Risco alto no centro.",
            "priorityZones": [{
                "location": "Centro",
                "heatRiskLevel": "high",
                "socialVulnerability": "high",
                "recommendedIntervention": "Ipês a cada 8 m",
                "estimatedImpact": "-2 °C, 20 mil pessoas",
            }],
            "suggestedActions": "Arborizar corredores.",
        })
        flows = ai_flows.AiFlows(client=client, model="test-model")

        result = flows.diagnose_urban_heat_islands(_diagnose_input())

        assert result.priorityZones[0].location == "Centro"
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["config"]["response_mime_type"] == "application/json"
        assert kwargs["config"]["response_schema"] is ai_flows.DiagnoseOutput
        contents = kwargs["contents"]
        assert "Cidade do interior paulista." in contents[0]
        assert len(contents) == 5
        assert all(isinstance(p, types.Part) for p in contents[1:])

    def test_empty_output(self):
        flows = ai_flows.AiFlows(client=_client(""), model="m")
        with pytest.raises(DashboardError, match="no output"):
            flows.diagnose_urban_heat_islands(_diagnose_input())

    def test_invalid_output(self):
        flows = ai_flows.AiFlows(client=_client({"summary": "only this"}), model="m")
        with pytest.raises(DashboardError, match="invalid output"):
            flows.diagnose_urban_heat_islands(_diagnose_input())


class TestTextFlows:
    def test_planting_recommendations(self):
        client = _client({
            "recommendedSpecies": ["Ipê-amarelo", "Pau-brasil"],
            "plantingStrategy": "Espaçamento de 6 m.",
            "estimatedImpact": "Redução de 1,5 °C.",
        })
        flows = ai_flows.AiFlows(client=client, model="m")
        result = flows.generate_planting_recommendations(ai_flows.PlantingInput(
            areaDescription="Praça central",
            environmentalConditions="Clima tropical, solo argiloso",
            desiredOutcomes="Reduzir calor",
        ))

        assert result.recommendedSpecies == ["Ipê-amarelo", "Pau-brasil"]
        prompt = client.models.generate_content.call_args.kwargs["contents"][0]
        assert "Area Description: Praça central" in prompt
        assert "Desired Outcomes: Reduzir calor" in prompt

    def test_climate_plan(self):
        client = _client({"climatePlan": "Plano", "supportingDocumentation": "Docs"})
        flows = ai_flows.AiFlows(client=client, model="m")
        result = flows.generate_climate_plan(ai_flows.ClimatePlanInput(
            municipalityName="Campinas",
            problemDescription="Ilhas de calor",
            suggestedAreas="Centro",
        ))
        assert result.climatePlan == "Plano"
        prompt = client.models.generate_content.call_args.kwargs["contents"][0]
        assert "municipality of Campinas" in prompt

    def test_city_description_from_ibge(self):
        record = {
            "id": 3509502,
            "nome": "Campinas",
            "microrregiao": {
                "nome": "Campinas",
                "mesorregiao": {"nome": "Campinas", "UF": {"sigla": "SP", "regiao": {"nome": "Sudeste"}}},
            },
            "population": "1139047",
            "area": "794.571",
        }
        client = _client({"description": "Campinas fica em SP."})
        flows = ai_flows.AiFlows(client=client, model="m")

        result = flows.generate_city_description(ai_flows.CityDescriptionInput.from_ibge(record))

        assert result.description == "Campinas fica em SP."
        prompt = client.models.generate_content.call_args.kwargs["contents"][0]
        assert "UF: SP" in prompt
        assert "População (Estimativa 2022): 1139047" in prompt


class TestClient:
    def test_missing_api_key(self, monkeypatch):
        settings = ai_flows.get_settings()
        monkeypatch.setattr(settings, "gemini_api_key", None)
        flows = ai_flows.AiFlows(model="m")
        with pytest.raises(DashboardError, match="GEMINI_API_KEY"):
            flows.client
