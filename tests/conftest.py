import itertools
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from google.cloud import firestore

from urban_climate.errors import DashboardError

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake_png_payload"


class FakeRasterProvider:
    """In-process stand-in for EarthEngineProvider; images are plain tuples."""

    def __init__(self, municipalities=("Campinas",), thumbnail_error=None):
        self.municipalities = set(municipalities)
        self.thumbnail_error = thumbnail_error
        self.calls = []
        self.initialized = 0

    def initialize(self):
        self.initialized += 1

    def resolve_boundary(self, name):
        self.calls.append(("resolve_boundary", name))
        if name not in self.municipalities:
            raise DashboardError(f"No municipality boundary found for '{name}'")
        return ("boundary", name)

    def composite_image(self, boundary, date_range, cloud_filter, collection="LANDSAT/LC09/C02/T1_L2"):
        self.calls.append(("composite_image", collection, date_range, cloud_filter))
        return ("composite", collection)

    def derive_index(self, image, band_a, band_b, name):
        self.calls.append(("derive_index", band_a, band_b))
        return ("index", name)

    def calibrate_band(self, image, band, gain, offset):
        self.calls.append(("calibrate_band", band, gain, offset))
        return ("calibrated", band)

    def population_density(self, boundary, year):
        self.calls.append(("population_density", year))
        return ("population", year)

    def point_features(self, asset_id, boundary):
        return ("points", asset_id)

    def rasterize_points(self, feature_sets, width=2):
        self.calls.append(("rasterize_points", len(feature_sets), width))
        return ("infrastructure",)

    def render_thumbnail(self, image, vis_params, name):
        self.calls.append(("render_thumbnail", name, vis_params))
        if self.thumbnail_error and name == self.thumbnail_error:
            raise DashboardError(f"Failed to get image URL for {name} from Earth Engine: boom")
        return f"https://earthengine.test/thumbnails/{name}.png"


def png_response(status_code=200, content=PNG_BYTES):
    resp = Mock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.content = content
    resp.text = "" if resp.ok else "error body"
    return resp


@pytest.fixture
def provider():
    return FakeRasterProvider()


@pytest.fixture
def png_session():
    session = Mock()
    session.get.return_value = png_response()
    return session


# ------------ In-memory Firestore ------------
def _resolve_timestamps(data):
    now = datetime.now(timezone.utc)
    return {k: now if v is firestore.SERVER_TIMESTAMP else v for k, v in data.items()}


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocument:
    def __init__(self, collection, doc_id):
        self._collection = collection
        self.id = doc_id

    def get(self):
        return FakeSnapshot(self.id, self._collection.docs.get(self.id))

    def set(self, data):
        self._collection.docs[self.id] = _resolve_timestamps(data)

    def update(self, data):
        if self.id not in self._collection.docs:
            raise KeyError(self.id)
        self._collection.docs[self.id].update(_resolve_timestamps(data))


class FakeCollection:
    _ids = itertools.count(1)

    def __init__(self):
        self.docs = {}

    def document(self, doc_id):
        return FakeDocument(self, doc_id)

    def add(self, data):
        ref = FakeDocument(self, f"doc{next(self._ids)}")
        ref.set(data)
        return None, ref

    def stream(self):
        return [FakeSnapshot(doc_id, data) for doc_id, data in list(self.docs.items())]


class FakeFirestoreClient:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection())


@pytest.fixture
def firestore_client():
    return FakeFirestoreClient()
