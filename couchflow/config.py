from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_PAGE_SIZE, DEFAULT_PROGRESS_INTERVAL


class TLSConfig(BaseModel):
    """TLS settings passed through to the HTTP session."""

    enabled: bool = False
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    ca_file: Optional[str] = None
    insecure_skip_verify: bool = False


class CouchDBConfig(BaseModel):
    """Connection settings for the CouchDB backend."""

    url: str = "http://localhost:5984"
    database: str = "flow_processes"
    username: Optional[str] = None
    password: Optional[str] = None
    timeout_ms: int = 30000
    create_if_missing: bool = True
    page_size: int = DEFAULT_PAGE_SIZE
    tls: Optional[TLSConfig] = None


class StoreConfig(BaseModel):
    """Backing store selection."""

    backend: Literal["inmemory", "couchdb"] = "couchdb"


class ExportConfig(BaseModel):
    """Bulk export settings."""

    output_dir: str = "exports"
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL


class CouchflowConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    couchdb: CouchDBConfig = CouchDBConfig()
    export: ExportConfig = ExportConfig()


_ENV_OVERRIDES = {
    "COUCHFLOW_COUCHDB_URL": "url",
    "COUCHFLOW_COUCHDB_DATABASE": "database",
    "COUCHFLOW_COUCHDB_USERNAME": "username",
    "COUCHFLOW_COUCHDB_PASSWORD": "password",
}


def load_config(path: Optional[str] = None) -> CouchflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to COUCHFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("COUCHFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CouchflowConfig(**data)
    else:
        config = CouchflowConfig()

    for env_name, field in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            setattr(config.couchdb, field, value)

    backend = os.getenv("COUCHFLOW_STORE")
    if backend:
        config.store = StoreConfig(backend=backend.lower())
    return config
