"""
effective_access.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for clients, resolver and API.
- Hide bearer tokens from repr/logging.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EA_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "effective-access"
    log_level: str = "INFO"
    # Console rendering for local runs; JSON everywhere else.
    log_json: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Upstream endpoints
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    resource_graph_url: str = (
        "https://management.azure.com/providers/Microsoft.ResourceGraph/resources"
    )
    resource_graph_api_version: str = "2021-03-01"
    request_timeout_seconds: float = 30.0

    # Pre-acquired bearer tokens; acquiring them is the caller's job.
    graph_access_token: str = Field(default="", repr=False)
    management_access_token: str = Field(default="", repr=False)

    # Group hierarchy resolution
    parallel_processing: bool = True
    max_degree_of_parallelism: int = Field(default=4, ge=1)
    group_failure_policy: Literal["leaf", "fail"] = "leaf"

    # Retry/backoff shared by directory and role assignment queries
    max_retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    max_backoff_seconds: float = Field(default=60.0, gt=0)

    # Role assignment queries
    page_size: int = Field(default=1000, ge=1, le=1000)

    # Report assembly
    max_tree_depth: int = Field(default=32, ge=0)
    max_tree_nodes: int = Field(default=5000, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Resource Graph caps `$top` at 1000 rows per page, hence the `page_size` bound.
