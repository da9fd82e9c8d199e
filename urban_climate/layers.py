"""
Urban heat island layers for a municipality.

Derives four visualized layers (NDVI, LST, population density, critical
infrastructure) through a RasterProvider, requests a PNG thumbnail of each,
downloads the four thumbnails concurrently and returns them as data URIs.
Any failure aborts the whole request; there is no partial bundle.
"""

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import requests
from pydantic import BaseModel

from .config import get_settings
from .earth_engine import SENTINEL2_COLLECTION, RasterProvider
from .errors import DashboardError

logger = logging.getLogger(__name__)

# ------------ Constants ------------
ANALYSIS_WINDOW = ("2023-01-01", "2023-12-31")
LANDSAT_CLOUD_FILTER = ("CLOUD_COVER", 20)
SENTINEL_CLOUD_FILTER = ("CLOUDY_PIXEL_PERCENTAGE", 10)
POPULATION_YEAR = 2020

# Landsat Collection 2 surface temperature scale factors, then Kelvin -> Celsius
LST_GAIN = 0.00341802
LST_OFFSET = 149.0 - 273.15

NDVI_VIS = {"min": -0.2, "max": 0.8, "palette": ["blue", "white", "green"]}
LST_VIS = {"min": 20, "max": 40, "palette": ["blue", "green", "yellow", "red"]}
POPULATION_VIS = {"min": 0, "max": 1000, "palette": ["white", "yellow", "orange", "red"]}
INFRASTRUCTURE_VIS = {"palette": ["purple"]}
TRUE_COLOR_VIS = {"bands": ["B4", "B3", "B2"], "min": 0, "max": 3000}

PNG_DATA_URI_PREFIX = "data:image/png;base64,"


# ------------ Output models ------------
class LayerBundle(BaseModel):
    ndviDataUri: str
    lstDataUri: str
    populationDensityData: str
    infrastructureData: str


class CityMap(BaseModel):
    mapDataUri: str


# ------------ Thumbnail download ------------
def to_data_uri(content: bytes) -> str:
    return PNG_DATA_URI_PREFIX + base64.b64encode(content).decode("ascii")


def fetch_image_as_data_uri(url: str, name: str, session: Optional[requests.Session] = None,
                            timeout: Optional[float] = None) -> str:
    """Download a rendered thumbnail and re-encode it as an embeddable data URI."""
    http = session or requests
    timeout = timeout or get_settings().http_timeout
    logger.info("Fetching image data for: %s", name)
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise DashboardError(f"Failed to fetch image data for {name} from Google Earth Engine: {e}") from e

    if not resp.ok:
        logger.error("Failed to fetch image for %s. Status: %s Body: %s", name, resp.status_code, resp.text)
        raise DashboardError(
            f"Failed to fetch image data for {name} from Google Earth Engine. Status: {resp.status_code}"
        )
    if not resp.content:
        raise DashboardError(f"Empty image returned for {name} by Google Earth Engine")

    logger.info("Successfully fetched and encoded image for: %s", name)
    return to_data_uri(resp.content)


def fetch_all(urls: List[Tuple[str, str]], session: Optional[requests.Session] = None) -> List[str]:
    """
    Download every (name, url) pair concurrently.

    All downloads must succeed: once every future has settled, the first
    failure (in input order) is raised.
    """
    session = session or requests.Session()
    with ThreadPoolExecutor(max_workers=len(urls) or 1) as pool:
        futures = [pool.submit(fetch_image_as_data_uri, url, name, session) for name, url in urls]
    return [f.result() for f in futures]


# ------------ Layer derivation ------------
def build_heat_island_layers(provider: RasterProvider, municipality_name: str) -> Dict[str, object]:
    """Return the four visualizable layers (unrendered) keyed by display name."""
    settings = get_settings()

    logger.info("Fetching municipality geometry...")
    geometry = provider.resolve_boundary(municipality_name)
    logger.info("Municipality geometry obtained.")

    logger.info("Fetching Landsat 9 data...")
    median_image = provider.composite_image(geometry, ANALYSIS_WINDOW, LANDSAT_CLOUD_FILTER)
    logger.info("Landsat 9 data processed.")

    ndvi = provider.derive_index(median_image, "SR_B5", "SR_B4", "NDVI")
    logger.info("NDVI calculated.")

    lst = provider.calibrate_band(median_image, "ST_B10", LST_GAIN, LST_OFFSET)
    logger.info("LST calculated.")

    logger.info("Fetching Population Density data...")
    population = provider.population_density(geometry, POPULATION_YEAR)
    logger.info("Population Density data processed.")

    logger.info("Fetching Critical Infrastructure data...")
    hospitals = provider.point_features(settings.ee_hospitals_asset, geometry)
    schools = provider.point_features(settings.ee_schools_asset, geometry)
    infrastructure = provider.rasterize_points([hospitals, schools], width=2)
    logger.info("Critical Infrastructure data processed.")

    return {
        "NDVI": (ndvi, NDVI_VIS),
        "LST": (lst, LST_VIS),
        "Population": (population, POPULATION_VIS),
        "Infrastructure": (infrastructure, INFRASTRUCTURE_VIS),
    }


def get_urban_heat_island_data(provider: RasterProvider, municipality_name: str,
                               session: Optional[requests.Session] = None) -> LayerBundle:
    """
    Fetch the four urban heat island layers for a municipality.

    Steps:
    1. Resolve the municipality boundary
    2. Derive NDVI, LST, population density and infrastructure layers
    3. Request a PNG thumbnail URL per layer
    4. Download the four thumbnails concurrently as data URIs
    """
    logger.info("Fetching Earth Engine data for: %s", municipality_name)
    provider.initialize()

    layers = build_heat_island_layers(provider, municipality_name)

    logger.info("Generating and fetching all image URIs...")
    urls = [
        (name, provider.render_thumbnail(image, vis, name))
        for name, (image, vis) in layers.items()
    ]
    ndvi_uri, lst_uri, population_uri, infrastructure_uri = fetch_all(urls, session)

    logger.info("All data URIs created successfully for %s.", municipality_name)
    return LayerBundle(
        ndviDataUri=ndvi_uri,
        lstDataUri=lst_uri,
        populationDensityData=population_uri,
        infrastructureData=infrastructure_uri,
    )


def get_city_map(provider: RasterProvider, municipality_name: str,
                 session: Optional[requests.Session] = None) -> CityMap:
    """True-color Sentinel-2 map of the municipality as a single data URI."""
    logger.info("Fetching satellite map for: %s", municipality_name)
    provider.initialize()

    geometry = provider.resolve_boundary(municipality_name)
    logger.info("Fetching Sentinel-2 data...")
    median_image = provider.composite_image(
        geometry, ANALYSIS_WINDOW, SENTINEL_CLOUD_FILTER, collection=SENTINEL2_COLLECTION
    )

    url = provider.render_thumbnail(median_image, TRUE_COLOR_VIS, "SatelliteMap")
    map_uri = fetch_image_as_data_uri(url, "SatelliteMap", session)
    logger.info("Satellite map created successfully.")
    return CityMap(mapDataUri=map_uri)
