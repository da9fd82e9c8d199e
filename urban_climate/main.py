import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import ai_flows, layers, postal
from .config import get_settings
from .earth_engine import EarthEngineProvider
from .errors import DashboardError
from .ibge import IbgeClient
from .store import ROLE_PUBLIC_MANAGER, FirestoreStore

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Urban Climate Planning API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Dependencies ==============
@lru_cache
def get_raster_provider() -> EarthEngineProvider:
    return EarthEngineProvider()


@lru_cache
def get_ai() -> ai_flows.AiFlows:
    return ai_flows.AiFlows()


@lru_cache
def get_store() -> FirestoreStore:
    return FirestoreStore()


@lru_cache
def get_ibge() -> IbgeClient:
    return IbgeClient()


# ============== Request Models ==============
class RequestModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class MunicipalityRequest(RequestModel):
    municipalityName: str = Field(min_length=1)


class DiagnoseRequest(RequestModel):
    municipalityName: str = Field(min_length=1)
    municipalityDescription: str = Field(min_length=1)


class CityRequest(RequestModel):
    cityName: str = Field(min_length=1)


class CreateUserRequest(RequestModel):
    displayName: str = Field(min_length=1)
    email: str = Field(min_length=1)
    role: str = ROLE_PUBLIC_MANAGER
    cityId: Optional[str] = None
    userId: Optional[str] = None


class UpdateUserRequest(RequestModel):
    displayName: str = Field(min_length=1)
    role: str = Field(min_length=1)
    cityId: Optional[str] = None


# ============== Envelopes ==============
def ok(data: Any = None) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    return {"success": True, "data": data}


def fail(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error}


def run_action(action: Callable[[], Any], failure_message: str) -> Dict[str, Any]:
    """Run a request action and fold any failure into the error envelope."""
    try:
        return ok(action())
    except DashboardError as e:
        logger.error("%s: %s", failure_message, e.message)
        return fail(e.message)
    except Exception:
        logger.exception(failure_message)
        return fail(failure_message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report empty or missing fields before any remote call is made."""
    fields = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        field = ".".join(loc) or "body"
        if err.get("type") in ("missing", "string_too_short"):
            fields[field] = f"{field} is required."
        else:
            fields[field] = err.get("msg", "Invalid value.")
    body = fail(", ".join(fields.values()))
    body["fields"] = fields
    return JSONResponse(status_code=422, content=body)


# ============== Earth Engine ==============
@app.post("/api/layers")
def api_layers(req: MunicipalityRequest, provider=Depends(get_raster_provider)):
    """Four heat island layers (NDVI, LST, population, infrastructure) as data URIs."""
    return run_action(
        lambda: layers.get_urban_heat_island_data(provider, req.municipalityName),
        "Failed to fetch Earth Engine layers.",
    )


@app.post("/api/city-map")
def api_city_map(req: MunicipalityRequest, provider=Depends(get_raster_provider)):
    return run_action(
        lambda: layers.get_city_map(provider, req.municipalityName),
        "Failed to fetch the satellite map.",
    )


# ============== AI Flows ==============
@app.post("/api/diagnostics")
def api_diagnostics(req: DiagnoseRequest, provider=Depends(get_raster_provider),
                    ai=Depends(get_ai)):
    """
    Municipality name -> Earth Engine layers -> heat island diagnosis.
    Returns both the model output and the input it was given.
    """
    def action():
        bundle = layers.get_urban_heat_island_data(provider, req.municipalityName)
        diagnose_input = ai_flows.DiagnoseInput(
            municipalityDescription=req.municipalityDescription,
            **bundle.model_dump(),
        )
        output = ai.diagnose_urban_heat_islands(diagnose_input)
        return {"output": output.model_dump(), "input": diagnose_input.model_dump()}

    return run_action(action, "An error occurred during the diagnosis.")


@app.post("/api/recommendations")
def api_recommendations(req: ai_flows.PlantingInput, ai=Depends(get_ai)):
    return run_action(
        lambda: ai.generate_planting_recommendations(req),
        "Failed to generate recommendations.",
    )


@app.post("/api/plan")
def api_plan(req: ai_flows.ClimatePlanInput, ai=Depends(get_ai)):
    return run_action(lambda: ai.generate_climate_plan(req), "Failed to generate the plan.")


@app.post("/api/city-info")
def api_city_info(req: MunicipalityRequest, ibge=Depends(get_ibge), ai=Depends(get_ai)):
    """IBGE statistics for the municipality, summarized by the model."""
    def action():
        record = ibge.get_city_record(req.municipalityName)
        return ai.generate_city_description(ai_flows.CityDescriptionInput.from_ibge(record))

    return run_action(action, "Failed to fetch city information.")


@app.get("/api/postal-code/{cep}")
def api_postal_code(cep: str):
    return run_action(lambda: postal.lookup_postal_code(cep), "Failed to look up the postal code.")


# ============== Cities & Users ==============
@app.get("/api/cities")
def api_list_cities(store=Depends(get_store)):
    return run_action(store.list_cities, "Failed to list cities.")


@app.post("/api/cities")
def api_add_city(req: CityRequest, store=Depends(get_store)):
    return run_action(lambda: {"id": store.add_city(req.cityName)}, "Failed to add the city.")


@app.get("/api/users")
def api_list_users(store=Depends(get_store)):
    return run_action(store.list_users, "Failed to list users.")


@app.post("/api/users")
def api_create_user(req: CreateUserRequest, store=Depends(get_store)):
    def action():
        user_id = store.create_user(
            display_name=req.displayName,
            email=req.email,
            role=req.role,
            city_id=req.cityId,
            user_id=req.userId,
        )
        return {"id": user_id}

    return run_action(action, "Failed to create the user.")


@app.patch("/api/users/{user_id}")
def api_update_user(user_id: str, req: UpdateUserRequest, store=Depends(get_store)):
    def action():
        store.update_user(user_id, display_name=req.displayName, role=req.role, city_id=req.cityId)
        return {"id": user_id}

    return run_action(action, "Failed to update the user.")


@app.get("/health")
def health():
    return {"status": "ok"}
