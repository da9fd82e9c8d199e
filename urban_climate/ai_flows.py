"""
Generative AI flows (Gemini via google-genai).

Each flow is a named prompt template with a typed input model and a typed
output model. The model is asked for JSON matching the output schema and
the answer is validated into the output model.
"""

import base64
import logging
import re
from typing import Dict, List, Optional, Sequence, Type

from google import genai
from google.genai import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import get_settings
from .errors import DashboardError

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


# ------------ Diagnostics ------------
class DiagnoseInput(BaseModel):
    ndviDataUri: str = Field(description="Vegetation cover (NDVI) as a PNG data URI. Near +1 is dense vegetation, near -1 is bare soil, snow or water.")
    lstDataUri: str = Field(description="Land surface temperature (LST) as a PNG data URI.")
    populationDensityData: str = Field(description="Population density (people per km²) as a PNG data URI.")
    infrastructureData: str = Field(description="Proximity to critical infrastructure (schools, hospitals) as a PNG data URI.")
    municipalityDescription: str = Field(description="A general description of the municipality.")


class PriorityZone(BaseModel):
    location: str = Field(description="The name of the location.")
    heatRiskLevel: str = Field(description="high, medium or low. High means high surface temperature and low vegetation.")
    socialVulnerability: str = Field(description="high, medium or low. High means high population density and proximity to critical infrastructure.")
    recommendedIntervention: str = Field(description="Recommended green intervention, mentioning planting density and suggested species.")
    estimatedImpact: str = Field(description="Estimated temperature reduction and number of people benefited.")


class DiagnoseOutput(BaseModel):
    summary: str = Field(description="Summary of the analysis including the overall heat risk level of the municipality.")
    priorityZones: List[PriorityZone] = Field(description="Priority zones sorted by heat risk level, most urgent first.")
    suggestedActions: str = Field(description="Recommended actions for the city manager.")


DIAGNOSE_PROMPT = """You are an expert in urban heat island analysis and green intervention planning. Your goal is to analyze urban heat islands within a municipality and identify priority areas for green interventions. You will provide a summary of the analysis, a list of priority zones for green intervention, and recommended actions for the city manager to mitigate heat risks and improve community well-being.

Use the following data to perform the analysis:

Municipality Description: {municipalityDescription}

The attached images are, in order: Vegetation Cover (NDVI), Land Surface Temperature (LST), Population Density and Proximity to Critical Infrastructure.

Output should be formatted as JSON with the following keys: summary, priorityZones, suggestedActions.

In the priorityZones field, each zone should include: location, heatRiskLevel, socialVulnerability, recommendedIntervention, and estimatedImpact.

Give detailed intervention suggestions. Consider planting density and suggested species.
"""


# ------------ Planting recommendations ------------
class PlantingInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    areaDescription: str = Field(min_length=1, description="Description of the area that needs planting recommendations.")
    environmentalConditions: str = Field(min_length=1, description="Climate, soil type and sunlight exposure of the area.")
    desiredOutcomes: str = Field(min_length=1, description="Desired outcomes, such as reducing heat or increasing biodiversity.")


class PlantingOutput(BaseModel):
    recommendedSpecies: List[str] = Field(description="Recommended plant species for the area.")
    plantingStrategy: str = Field(description="Spacing, layout and maintenance recommendations.")
    estimatedImpact: str = Field(description="Temperature reduction, air quality improvement and carbon sequestration.")


PLANTING_PROMPT = """You are an expert urban planner specializing in planting recommendations.

You will use the provided information about the area, its environmental conditions, and the desired outcomes to generate planting recommendations.

Area Description: {areaDescription}
Environmental Conditions: {environmentalConditions}
Desired Outcomes: {desiredOutcomes}

Consider the following factors when generating your recommendations:

*   Native plant species
*   Adaptation to the local climate
*   Soil type
*   Sunlight exposure
*   Water availability
*   Maintenance requirements

Provide a list of recommended plant species, a planting strategy, and an estimate of the environmental impact of the planting.
"""


# ------------ Climate plan ------------
class ClimatePlanInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    municipalityName: str = Field(min_length=1, description="The name of the municipality.")
    problemDescription: str = Field(min_length=1, description="The climate related problem.")
    suggestedAreas: str = Field(min_length=1, description="Suggested areas for green intervention.")


class ClimatePlanOutput(BaseModel):
    climatePlan: str = Field(description="The generated climate plan.")
    supportingDocumentation: str = Field(description="Supporting documentation for the climate plan.")


CLIMATE_PLAN_PROMPT = """You are an expert climate planner. Generate a climate plan for the municipality of {municipalityName}.

The problem is: {problemDescription}

Suggested areas for green intervention: {suggestedAreas}

Include supporting documentation.
"""


# ------------ City description ------------
class CityDescriptionInput(BaseModel):
    name: str
    microrregiao: str = ""
    mesorregiao: str = ""
    uf: str = ""
    regiao: str = ""
    population: str = ""
    area: str = ""

    @classmethod
    def from_ibge(cls, record: Dict) -> "CityDescriptionInput":
        micro = record.get("microrregiao") or {}
        meso = micro.get("mesorregiao") or {}
        uf = meso.get("UF") or {}
        return cls(
            name=record.get("nome", ""),
            microrregiao=micro.get("nome", ""),
            mesorregiao=meso.get("nome", ""),
            uf=uf.get("sigla", ""),
            regiao=(uf.get("regiao") or {}).get("nome", ""),
            population=str(record.get("population", "")),
            area=str(record.get("area", "")),
        )


class CityDescriptionOutput(BaseModel):
    description: str = Field(description="A generated description of the city based on IBGE data.")


CITY_DESCRIPTION_PROMPT = """You are an expert urban planner assistant. Based on the following data from IBGE for a Brazilian municipality, generate a concise and informative description (in Portuguese) suitable for a climate planning context.
Focus on key aspects like location, biome, population, and area. Keep it to 2-3 sentences.

IBGE Data:
- Nome: {name}
- Microrregião: {microrregiao}
- Mesorregião: {mesorregiao}
- UF: {uf}
- Bioma: {regiao} (Note: This is the broader region's biome, adapt if more specific info is known)
- População (Estimativa 2022): {population}
- Área Territorial (km²): {area}

Generate the description now.
"""


# ------------ Flow plumbing ------------
def data_uri_to_part(data_uri: str) -> types.Part:
    """Turn a base64 data URI into an inline media part."""
    match = DATA_URI_RE.match(data_uri or "")
    if not match:
        raise DashboardError("Expected a base64 data URI ('data:<mimetype>;base64,<data>')")
    return types.Part.from_bytes(data=base64.b64decode(match.group("data")), mime_type=match.group("mime"))


class PromptFlow:
    def __init__(self, name: str, template: str, input_model: Type[BaseModel],
                 output_model: Type[BaseModel], media_fields: Sequence[str] = ()):
        self.name = name
        self.template = template
        self.input_model = input_model
        self.output_model = output_model
        self.media_fields = tuple(media_fields)

    def build_contents(self, data: BaseModel) -> list:
        fields = data.model_dump()
        contents = [self.template.format(**fields)]
        contents.extend(data_uri_to_part(fields[f]) for f in self.media_fields)
        return contents

    def run(self, client: genai.Client, model: str, data: BaseModel) -> BaseModel:
        logger.info("Running prompt %s with model %s", self.name, model)
        response = client.models.generate_content(
            model=model,
            contents=self.build_contents(data),
            config={
                "response_mime_type": "application/json",
                "response_schema": self.output_model,
            },
        )
        text = getattr(response, "text", None)
        if not text:
            raise DashboardError(f"The model returned no output for {self.name}")
        try:
            return self.output_model.model_validate_json(text)
        except ValidationError as e:
            logger.error("Invalid output from %s: %s", self.name, text)
            raise DashboardError(f"The model returned an invalid output for {self.name}") from e


diagnose_flow = PromptFlow(
    "diagnoseUrbanHeatIslandsPrompt", DIAGNOSE_PROMPT, DiagnoseInput, DiagnoseOutput,
    media_fields=("ndviDataUri", "lstDataUri", "populationDensityData", "infrastructureData"),
)
planting_flow = PromptFlow(
    "generatePlantingRecommendationsPrompt", PLANTING_PROMPT, PlantingInput, PlantingOutput,
)
climate_plan_flow = PromptFlow(
    "generateClimatePlanPrompt", CLIMATE_PLAN_PROMPT, ClimatePlanInput, ClimatePlanOutput,
)
city_description_flow = PromptFlow(
    "generateCityDescriptionPrompt", CITY_DESCRIPTION_PROMPT, CityDescriptionInput, CityDescriptionOutput,
)


class AiFlows:
    """The dashboard's generative calls, sharing one client."""

    def __init__(self, client: Optional[genai.Client] = None, model: Optional[str] = None):
        settings = get_settings()
        self._client = client
        self.model = model or settings.genai_model

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            api_key = get_settings().gemini_api_key
            if not api_key:
                raise DashboardError("GEMINI_API_KEY environment variable is required")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def diagnose_urban_heat_islands(self, data: DiagnoseInput) -> DiagnoseOutput:
        return diagnose_flow.run(self.client, self.model, data)

    def generate_planting_recommendations(self, data: PlantingInput) -> PlantingOutput:
        return planting_flow.run(self.client, self.model, data)

    def generate_climate_plan(self, data: ClimatePlanInput) -> ClimatePlanOutput:
        return climate_plan_flow.run(self.client, self.model, data)

    def generate_city_description(self, data: CityDescriptionInput) -> CityDescriptionOutput:
        return city_description_flow.run(self.client, self.model, data)
