"""Configuration for the Library Book Finder service."""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file if present
load_dotenv()

DEFAULT_DATABASE_URL = "postgresql://book_finder:book_finder@db:5432/book_finder"
DEFAULT_CATALOG_SEARCH_URL = (
    "https://www.bibliotecaspublicas.gob.cl/buscador-libros-transversal"
    "?region_id=14&commune_id%5B%5D=310"
)
DEFAULT_DETAIL_URL = "http://www.bncatalogo.cl/F"


class CacheSettings(BaseModel):
    """Runtime settings for the book cache and the catalog client."""
    database_url: str = Field(DEFAULT_DATABASE_URL, description="SQLAlchemy database URL")
    db_timeout_seconds: int = Field(10, gt=0, description="Connect/statement timeout for store calls")

    staleness_hours: int = Field(24, gt=0, description="Age after which a cached book is stale")
    soft_ceiling: int = Field(8000, gt=0, description="Row count above which cleanup is recommended")
    hard_ceiling: int = Field(10000, gt=0, description="Row count at or above which the cache is unhealthy")
    optimal_size: int = Field(5000, gt=0, description="Row count below which storage is considered optimal")
    default_popular_limit: int = Field(10, gt=0, description="Default size of the popular searches list")
    max_popular_limit: int = Field(100, gt=0, description="Upper bound on a requested popular searches list")
    max_results: int = Field(40, gt=0, description="Maximum books returned per search")

    catalog_search_url: str = Field(DEFAULT_CATALOG_SEARCH_URL, description="Catalog search page (without query)")
    catalog_detail_url: str = Field(DEFAULT_DETAIL_URL, description="Catalog item detail endpoint")
    catalog_timeout_seconds: int = Field(10, gt=0)
    catalog_max_retries: int = Field(3, gt=0)
    catalog_retry_delay_seconds: float = Field(2.0, ge=0)

    library_name: str = "Biblioteca Municipal Valdivia"
    library_region: str = "Los Ríos"
    library_comuna: str = "Valdivia"
    library_sub_library: str = "D207"

    @model_validator(mode="after")
    def check_ceilings(self) -> "CacheSettings":
        if self.default_popular_limit > self.max_popular_limit:
            raise ValueError(
                f"default_popular_limit ({self.default_popular_limit}) must not exceed "
                f"max_popular_limit ({self.max_popular_limit})"
            )
        if self.soft_ceiling > self.hard_ceiling:
            raise ValueError(
                f"soft_ceiling ({self.soft_ceiling}) must not exceed hard_ceiling ({self.hard_ceiling})"
            )
        return self

    @property
    def staleness_seconds(self) -> int:
        return self.staleness_hours * 60 * 60


# Environment variable -> settings field
ENV_FIELDS = {
    "DATABASE_URL": "database_url",
    "DB_TIMEOUT_SECONDS": "db_timeout_seconds",
    "CACHE_STALENESS_HOURS": "staleness_hours",
    "CACHE_SOFT_CEILING": "soft_ceiling",
    "CACHE_HARD_CEILING": "hard_ceiling",
    "CACHE_OPTIMAL_SIZE": "optimal_size",
    "CACHE_POPULAR_LIMIT": "default_popular_limit",
    "CACHE_MAX_POPULAR_LIMIT": "max_popular_limit",
    "CACHE_MAX_RESULTS": "max_results",
    "CATALOG_SEARCH_URL": "catalog_search_url",
    "CATALOG_DETAIL_URL": "catalog_detail_url",
    "CATALOG_TIMEOUT_SECONDS": "catalog_timeout_seconds",
    "CATALOG_MAX_RETRIES": "catalog_max_retries",
    "CATALOG_RETRY_DELAY_SECONDS": "catalog_retry_delay_seconds",
    "LIBRARY_NAME": "library_name",
    "LIBRARY_REGION": "library_region",
    "LIBRARY_COMUNA": "library_comuna",
    "LIBRARY_SUB_LIBRARY": "library_sub_library",
}


def load_settings(environ: Optional[dict] = None) -> CacheSettings:
    """Build settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        A validated CacheSettings instance

    Raises:
        pydantic.ValidationError: If a value is malformed or out of range
    """
    environ = os.environ if environ is None else environ
    values = {
        field: environ[env_name]
        for env_name, field in ENV_FIELDS.items()
        if environ.get(env_name) not in (None, "")
    }
    return CacheSettings(**values)


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
