import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

STAGING_REGION_SUFFIX = "-monster"

_TRUTHY = ("true", "1", "yes", "on")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    log_bucket: str
    api_url: str
    api_key: str

    # --- Optional Variables with Defaults ---
    region_config_path: str
    service_name: str
    staging: bool
    log_level: str

    # --- Processing Configuration ---
    worker_pool_size: int
    intake_queue_size: int
    collapse_http_status: bool

    # --- Timeouts ---
    s3_object_timeout_seconds: int
    s3_list_timeout_seconds: int
    api_timeout_seconds: float

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            log_bucket = os.environ["LOG_BUCKET_NAME"]
            api_url = os.environ["LIVEPEER_API_URL"]
            api_key = os.environ["LIVEPEER_API_KEY"]
            if not api_url.startswith(("http://", "https://")):
                raise ValueError("LIVEPEER_API_URL must be an http(s) URL.")

            region_config_path = os.getenv("REGION_CONFIG_PATH", "config.yaml")
            service_name = os.getenv("SERVICE_NAME", "cdn-log-etl")
            staging = os.getenv("STAGING", "false").lower() in _TRUTHY

            # --- Handle numeric variables with validation ---
            worker_pool_size = int(os.getenv("WORKER_POOL_SIZE", "10"))
            if worker_pool_size <= 0:
                raise ValueError("WORKER_POOL_SIZE must be a positive integer.")

            intake_queue_size = int(os.getenv("INTAKE_QUEUE_SIZE", "0"))
            if intake_queue_size < 0:
                raise ValueError("INTAKE_QUEUE_SIZE must be a non-negative integer.")

            collapse_http_status = (
                os.getenv("COLLAPSE_HTTP_STATUS", "false").lower() in _TRUTHY
            )

            s3_object_timeout_seconds = int(
                os.getenv("S3_OBJECT_TIMEOUT_SECONDS", "600")
            )
            if s3_object_timeout_seconds <= 0:
                raise ValueError("S3_OBJECT_TIMEOUT_SECONDS must be a positive integer.")

            s3_list_timeout_seconds = int(os.getenv("S3_LIST_TIMEOUT_SECONDS", "15"))
            if s3_list_timeout_seconds <= 0:
                raise ValueError("S3_LIST_TIMEOUT_SECONDS must be a positive integer.")

            api_timeout_seconds = float(os.getenv("API_TIMEOUT_SECONDS", "4"))
            if api_timeout_seconds <= 0:
                raise ValueError("API_TIMEOUT_SECONDS must be positive.")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            log_bucket=log_bucket,
            api_url=api_url,
            api_key=api_key,
            region_config_path=region_config_path,
            service_name=service_name,
            staging=staging,
            log_level=log_level,
            worker_pool_size=worker_pool_size,
            intake_queue_size=intake_queue_size,
            collapse_http_status=collapse_http_status,
            s3_object_timeout_seconds=s3_object_timeout_seconds,
            s3_list_timeout_seconds=s3_list_timeout_seconds,
            api_timeout_seconds=api_timeout_seconds,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()


def load_region_names(path: str | Path) -> dict[str, str]:
    """
    Reads the YAML table that maps a source directory (the top-level prefix
    in the log bucket) to a human readable region name::

        names:
          k3c3y8z2: fra-prod
          t8a6c4p8: nyc-monster
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read region config '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in region config '{path}': {e}") from e

    names = raw.get("names") if isinstance(raw, dict) else None
    if not isinstance(names, dict):
        raise ConfigurationError(
            f"Region config '{path}' must contain a 'names' mapping."
        )
    return {str(k): str(v) for k, v in names.items()}


def is_staging_region(region: str) -> bool:
    return region.endswith(STAGING_REGION_SUFFIX)
