"""
Unit tests for environment configuration.

Tests cover:
- Defaults
- Environment overrides
- Validation failures
"""

import pytest

from dbaas.docservice_server.config import (
    CassandraConfig,
    HttpConfig,
    SchemaConfig,
    ServerConfig,
    SqliteConfig,
    StorageBackendKind,
)

_ENV_VARS = [
    "STORAGE_BACKEND",
    "HTTP_HOST",
    "HTTP_PORT",
    "DATA_DIR",
    "SQLITE_FETCH_SIZE",
    "CASSANDRA_CONTACT_POINTS",
    "CASSANDRA_USERNAME",
    "CASSANDRA_PASSWORD",
    "DOCSERVICE_KEYSPACE",
    "DOCSERVICE_REPLICATION_FACTOR",
    "LOG_LEVEL",
    "LOG_FORMAT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path))


class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    def test_defaults(self, tmp_path):
        config = ServerConfig.from_env()

        assert config.storage_backend == StorageBackendKind.SQLITE
        assert config.http.port == 3000
        assert config.sqlite.data_dir == str(tmp_path)
        assert config.schema.keyspace == "docservice"
        assert config.schema.replication_factor == 3
        assert config.observability.log_format == "json"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "MEMORY")
        monkeypatch.setenv("HTTP_PORT", "8080")
        monkeypatch.setenv("DOCSERVICE_KEYSPACE", "docs_test")
        monkeypatch.setenv("DOCSERVICE_REPLICATION_FACTOR", "1")

        config = ServerConfig.from_env()

        assert config.storage_backend == StorageBackendKind.MEMORY
        assert config.http.port == 8080
        assert config.schema == SchemaConfig(keyspace="docs_test", replication_factor=1)

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "mysql")

        with pytest.raises(ValueError, match="Invalid STORAGE_BACKEND"):
            ServerConfig.from_env()

    def test_replication_factor_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("DOCSERVICE_REPLICATION_FACTOR", "0")

        with pytest.raises(ValueError, match="REPLICATION_FACTOR"):
            ServerConfig.from_env()

    def test_empty_keyspace_rejected(self, monkeypatch):
        monkeypatch.setenv("DOCSERVICE_KEYSPACE", "")

        with pytest.raises(ValueError, match="KEYSPACE"):
            ServerConfig.from_env()

    def test_port_range(self):
        config = ServerConfig(http=HttpConfig(port=70000))
        with pytest.raises(ValueError, match="HTTP_PORT"):
            config.validate()

    def test_sqlite_fetch_size(self):
        config = ServerConfig(sqlite=SqliteConfig(fetch_size=0))
        with pytest.raises(ValueError, match="SQLITE_FETCH_SIZE"):
            config.validate()

    def test_cassandra_requires_contact_points(self):
        config = ServerConfig(
            storage_backend=StorageBackendKind.CASSANDRA,
            cassandra=CassandraConfig(contact_points=" , "),
        )
        with pytest.raises(ValueError, match="CONTACT_POINTS"):
            config.validate()

    def test_cassandra_username_needs_password(self):
        config = ServerConfig(
            storage_backend=StorageBackendKind.CASSANDRA,
            cassandra=CassandraConfig(username="docs"),
        )
        with pytest.raises(ValueError, match="CASSANDRA_PASSWORD"):
            config.validate()


def test_contact_point_list():
    config = CassandraConfig(contact_points="10.0.0.1, 10.0.0.2,,")
    assert config.contact_point_list() == ["10.0.0.1", "10.0.0.2"]
