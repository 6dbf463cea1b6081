"""Tests for configuration loading."""

import pytest

from couchflow.config import load_config
from couchflow.store import InMemoryBackingStore, get_store


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
store:
  backend: inmemory
couchdb:
  url: http://couch.internal:5984
  database: orders
  timeout_ms: 1500
  tls:
    enabled: true
    ca_file: /etc/ssl/couch.pem
export:
  output_dir: /var/backups/couch
  progress_interval: 50
"""
    )
    monkeypatch.setenv("COUCHFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.store.backend == "inmemory"
    assert config.couchdb.url == "http://couch.internal:5984"
    assert config.couchdb.database == "orders"
    assert config.couchdb.timeout_ms == 1500
    assert config.couchdb.tls.ca_file == "/etc/ssl/couch.pem"
    assert config.export.progress_interval == 50


def test_load_config_defaults_when_file_missing(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config.store.backend == "couchdb"
    assert config.couchdb.url == "http://localhost:5984"
    assert config.couchdb.create_if_missing is True
    assert config.export.progress_interval == 100


def test_environment_overrides_file_values(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("couchdb:\n  database: from_file\n")
    monkeypatch.setenv("COUCHFLOW_COUCHDB_DATABASE", "from_env")
    monkeypatch.setenv("COUCHFLOW_COUCHDB_USERNAME", "admin")
    monkeypatch.setenv("COUCHFLOW_STORE", "INMEMORY")

    config = load_config(str(config_path))
    assert config.couchdb.database == "from_env"
    assert config.couchdb.username == "admin"
    assert config.store.backend == "inmemory"


def test_get_store_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("store:\n  backend: inmemory\ncouchdb:\n  database: flows\n")
    monkeypatch.setenv("COUCHFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("COUCHFLOW_STORE", raising=False)

    store = get_store()
    assert isinstance(store, InMemoryBackingStore)
    assert store.name == "flows"
    assert get_store() is not store


def test_get_store_rejects_unknown_backend(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    with pytest.raises(ValueError):
        get_store("mongo", config=config)
