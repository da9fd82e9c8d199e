"""
Earth Engine raster provider.

- Service-account authentication (credentials come from a provider, see config)
- Municipality boundary lookup in the boundaries asset
- Cloud-filtered median composites, band ratios, band calibration
- WorldPop population density and point-feature rasterization
- PNG thumbnail URLs for visualized layers
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import ee

from .config import EnvCredentialProvider, Settings, get_settings
from .errors import DashboardError

logger = logging.getLogger(__name__)

# ------------ Constants ------------
LANDSAT9_COLLECTION = "LANDSAT/LC09/C02/T1_L2"
SENTINEL2_COLLECTION = "COPERNICUS/S2_SR_HARMONIZED"
WORLDPOP_COLLECTION = "WorldPop/GP/100m/pop"
MUNICIPALITY_NAME_PROPERTY = "NM_MUN"

DateRange = Tuple[str, str]
CloudFilter = Tuple[str, float]


class RasterProvider(Protocol):
    """Operations the layer fetcher needs from a raster backend."""

    def initialize(self) -> None: ...

    def resolve_boundary(self, name: str) -> Any: ...

    def composite_image(
        self,
        boundary: Any,
        date_range: DateRange,
        cloud_filter: CloudFilter,
        collection: str = LANDSAT9_COLLECTION,
    ) -> Any: ...

    def derive_index(self, image: Any, band_a: str, band_b: str, name: str) -> Any: ...

    def calibrate_band(self, image: Any, band: str, gain: float, offset: float) -> Any: ...

    def population_density(self, boundary: Any, year: int) -> Any: ...

    def point_features(self, asset_id: str, boundary: Any) -> Any: ...

    def rasterize_points(self, feature_sets: Sequence[Any], width: int = 2) -> Any: ...

    def render_thumbnail(self, image: Any, vis_params: Dict[str, Any], name: str) -> str: ...


class EarthEngineProvider:
    """RasterProvider backed by the Earth Engine Python API."""

    _init_lock = threading.Lock()
    _initialized = False

    def __init__(self, credential_provider=None, settings: Optional[Settings] = None):
        self.credential_provider = credential_provider or EnvCredentialProvider()
        self.settings = settings or get_settings()

    # ------------ Authentication ------------
    def initialize(self) -> None:
        """Authenticate and initialize EE once per process."""
        with EarthEngineProvider._init_lock:
            if EarthEngineProvider._initialized:
                return
            creds = self.credential_provider.get_credentials()
            logger.info("Attempting to authenticate with Earth Engine...")
            try:
                credentials = ee.ServiceAccountCredentials(
                    creds.service_account,
                    key_file=creds.key_file,
                    key_data=creds.private_key,
                )
                ee.Initialize(credentials, project=creds.project)
            except Exception as e:
                logger.error("Earth Engine authentication failed: %s", e)
                raise DashboardError(f"Failed to authenticate with Earth Engine: {e}") from e
            EarthEngineProvider._initialized = True
            logger.info("Earth Engine API initialized with service account: %s", creds.service_account)

    # ------------ Boundary ------------
    def resolve_boundary(self, name: str):
        """Return the geometry of the municipality whose name matches exactly."""
        municipalities = ee.FeatureCollection(self.settings.ee_municipalities_asset)
        matches = municipalities.filter(ee.Filter.eq(MUNICIPALITY_NAME_PROPERTY, name))
        try:
            count = matches.size().getInfo()
        except ee.EEException as e:
            raise DashboardError(f"Failed to look up the boundary of '{name}': {e}") from e
        if not count:
            raise DashboardError(f"No municipality boundary found for '{name}'")
        return ee.Feature(matches.first()).geometry()

    # ------------ Imagery ------------
    def composite_image(self, boundary, date_range, cloud_filter, collection=LANDSAT9_COLLECTION):
        """Median of the cloud-filtered collection over the window, clipped to the boundary."""
        start, end = date_range
        cloud_property, max_cloud = cloud_filter
        images = (
            ee.ImageCollection(collection)
            .filterBounds(boundary)
            .filterDate(start, end)
            .filter(ee.Filter.lt(cloud_property, max_cloud))
        )
        return images.median().clip(boundary)

    def derive_index(self, image, band_a, band_b, name):
        a = image.select(band_a)
        b = image.select(band_b)
        return a.subtract(b).divide(a.add(b)).rename(name)

    def calibrate_band(self, image, band, gain, offset):
        return image.select(band).multiply(gain).add(offset)

    def population_density(self, boundary, year):
        return (
            ee.ImageCollection(WORLDPOP_COLLECTION)
            .filterDate(f"{year}-01-01", f"{year}-12-31")
            .mosaic()
            .clip(boundary)
        )

    # ------------ Point features ------------
    def point_features(self, asset_id, boundary):
        return ee.FeatureCollection(asset_id).filterBounds(boundary)

    def rasterize_points(self, feature_sets, width=2):
        """Paint every feature set onto an empty byte image and mask the unpainted pixels."""
        empty = ee.Image().byte()
        painted: List[Any] = [
            empty.paint(featureCollection=fc, color=1, width=width) for fc in feature_sets
        ]
        combined = painted[0]
        for layer in painted[1:]:
            combined = combined.add(layer)
        return combined.selfMask()

    # ------------ Thumbnails ------------
    def render_thumbnail(self, image, vis_params, name):
        """Visualize the image and return a PNG thumbnail URL."""
        logger.info("Requesting ThumbURL for: %s", name)
        try:
            url = image.visualize(**vis_params).getThumbURL({"format": "png"})
        except ee.EEException as e:
            logger.error("Error getting ThumbURL for %s: %s", name, e)
            raise DashboardError(f"Failed to get image URL for {name} from Earth Engine: {e}") from e
        if not url:
            raise DashboardError(
                f"No URL returned for {name}. The region may be too large or the processing may have failed."
            )
        logger.info("Successfully got ThumbURL for: %s", name)
        return url
