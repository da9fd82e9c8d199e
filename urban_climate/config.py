"""
Runtime configuration.

Everything is read from the environment (a local `.env` file is loaded
first). Earth Engine credentials are handed out by a credential provider
instead of being read inside the data pipeline.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .errors import DashboardError

# Load environment variables
load_dotenv()


DEFAULT_MUNICIPALITIES_ASSET = "projects/ee-mateusbatista/assets/Brasil_Mun"
DEFAULT_HOSPITALS_ASSET = "projects/ee-mateusbatista/assets/hospitais_brasil_osm_2024"
DEFAULT_SCHOOLS_ASSET = "projects/ee-mateusbatista/assets/escolas_brasil_osm_2024"


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class Settings:
    ee_municipalities_asset: str = DEFAULT_MUNICIPALITIES_ASSET
    ee_hospitals_asset: str = DEFAULT_HOSPITALS_ASSET
    ee_schools_asset: str = DEFAULT_SCHOOLS_ASSET
    gemini_api_key: Optional[str] = None
    genai_model: str = "gemini-2.5-flash"
    firestore_project_id: Optional[str] = None
    http_timeout: float = 60.0
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:9002"]
    )
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls()
        settings.ee_municipalities_asset = os.getenv(
            "EE_MUNICIPALITIES_ASSET", settings.ee_municipalities_asset
        )
        settings.ee_hospitals_asset = os.getenv("EE_HOSPITALS_ASSET", settings.ee_hospitals_asset)
        settings.ee_schools_asset = os.getenv("EE_SCHOOLS_ASSET", settings.ee_schools_asset)
        settings.gemini_api_key = os.getenv("GEMINI_API_KEY")
        settings.genai_model = os.getenv("GENAI_MODEL", settings.genai_model)
        settings.firestore_project_id = os.getenv("FIRESTORE_PROJECT_ID") or os.getenv("EE_PROJECT_ID")
        settings.http_timeout = float(os.getenv("HTTP_TIMEOUT", settings.http_timeout))
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            settings.cors_origins = _split_csv(origins)
        settings.log_level = os.getenv("LOG_LEVEL", settings.log_level).upper()
        settings.host = os.getenv("HOST", settings.host)
        settings.port = int(os.getenv("PORT", settings.port))
        return settings


# ------------ Earth Engine credentials ------------
@dataclass
class EarthEngineCredentials:
    service_account: str
    project: str
    private_key: Optional[str] = None
    key_file: Optional[str] = None


class EnvCredentialProvider:
    """
    Reads the Earth Engine service account from the environment.

    Either EE_PRIVATE_KEY (key text) or EE_CREDENTIALS_FILE (path, relative
    paths resolved against the working directory) must be set alongside
    EE_SERVICE_ACCOUNT and EE_PROJECT_ID.
    """

    def get_credentials(self) -> EarthEngineCredentials:
        sa_email = os.getenv("EE_SERVICE_ACCOUNT")
        private_key = os.getenv("EE_PRIVATE_KEY")
        creds_file = os.getenv("EE_CREDENTIALS_FILE")
        project = os.getenv("EE_PROJECT_ID")

        if creds_file and not os.path.isabs(creds_file):
            creds_file = os.path.abspath(creds_file)

        if not sa_email or not project or not (private_key or creds_file):
            raise DashboardError(
                "Earth Engine environment variables (service account, private key "
                "or credentials file, project ID) are not set."
            )
        if not private_key and not os.path.exists(creds_file):
            raise DashboardError(f"Earth Engine credentials file not found: {creds_file}")

        if private_key:
            # keys pasted into .env usually carry escaped newlines
            private_key = private_key.replace("\\n", "\n")

        return EarthEngineCredentials(
            service_account=sa_email,
            project=project,
            private_key=private_key,
            key_file=None if private_key else creds_file,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
