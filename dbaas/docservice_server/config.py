"""
Configuration management for DocService.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the storage backend
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from .schema.tables import DEFAULT_KEYSPACE, DEFAULT_REPLICATION_FACTOR

logger = logging.getLogger(__name__)


class StorageBackendKind(Enum):
    """Supported storage backends."""

    SQLITE = "sqlite"
    CASSANDRA = "cassandra"
    MEMORY = "memory"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind the HTTP server
        port: Port to listen on
        client_max_size: Maximum request body size in bytes
    """

    host: str = "0.0.0.0"
    port: int = 3000
    client_max_size: int = 16 * 1024 * 1024  # 16MB

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "3000")),
            client_max_size=int(os.getenv("HTTP_MAX_BODY_BYTES", str(16 * 1024 * 1024))),
        )


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite backend configuration.

    Attributes:
        data_dir: Directory for keyspace database files
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        fetch_size: Rows fetched per worker-thread round trip while scanning
    """

    data_dir: str = "/var/lib/docservice"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    fetch_size: int = 100

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/docservice"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            fetch_size=int(os.getenv("SQLITE_FETCH_SIZE", "100")),
        )


@dataclass(frozen=True)
class CassandraConfig:
    """Cassandra backend configuration.

    Attributes:
        contact_points: Comma-separated list of node addresses
        port: Native protocol port
        username: Username for PlainText auth (optional)
        password: Password for PlainText auth (optional)
        request_timeout: Driver request timeout in seconds
        fetch_size: Page size for partition scans
    """

    contact_points: str = "localhost"
    port: int = 9042
    username: str | None = None
    password: str | None = None
    request_timeout: float = 10.0
    fetch_size: int = 500

    @classmethod
    def from_env(cls) -> CassandraConfig:
        """Load configuration from environment variables."""
        return cls(
            contact_points=os.getenv("CASSANDRA_CONTACT_POINTS", "localhost"),
            port=int(os.getenv("CASSANDRA_PORT", "9042")),
            username=os.getenv("CASSANDRA_USERNAME"),
            password=os.getenv("CASSANDRA_PASSWORD"),
            request_timeout=float(os.getenv("CASSANDRA_REQUEST_TIMEOUT", "10.0")),
            fetch_size=int(os.getenv("CASSANDRA_FETCH_SIZE", "500")),
        )

    def contact_point_list(self) -> list[str]:
        return [p.strip() for p in self.contact_points.split(",") if p.strip()]


@dataclass(frozen=True)
class SchemaConfig:
    """Keyspace configuration.

    Attributes:
        keyspace: Keyspace (namespace) holding the three tables
        replication_factor: SimpleStrategy replication factor
    """

    keyspace: str = DEFAULT_KEYSPACE
    replication_factor: int = DEFAULT_REPLICATION_FACTOR

    @classmethod
    def from_env(cls) -> SchemaConfig:
        """Load configuration from environment variables."""
        return cls(
            keyspace=os.getenv("DOCSERVICE_KEYSPACE", DEFAULT_KEYSPACE),
            replication_factor=int(
                os.getenv("DOCSERVICE_REPLICATION_FACTOR", str(DEFAULT_REPLICATION_FACTOR))
            ),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        storage_backend: Which storage backend to use
        http: HTTP server configuration
        sqlite: SQLite configuration (if storage_backend is SQLITE)
        cassandra: Cassandra configuration (if storage_backend is CASSANDRA)
        schema: Keyspace configuration
        observability: Logging configuration
    """

    storage_backend: StorageBackendKind = StorageBackendKind.SQLITE
    http: HttpConfig = field(default_factory=HttpConfig)
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    cassandra: CassandraConfig = field(default_factory=CassandraConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            storage_backend = StorageBackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, cassandra, memory"
            )

        config = cls(
            storage_backend=storage_backend,
            http=HttpConfig.from_env(),
            sqlite=SqliteConfig.from_env(),
            cassandra=CassandraConfig.from_env(),
            schema=SchemaConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.schema.keyspace:
            raise ValueError("DOCSERVICE_KEYSPACE must not be empty")
        if self.schema.replication_factor < 1:
            raise ValueError("DOCSERVICE_REPLICATION_FACTOR must be at least 1")
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.storage_backend == StorageBackendKind.CASSANDRA:
            if not self.cassandra.contact_point_list():
                raise ValueError(
                    "CASSANDRA_CONTACT_POINTS is required when STORAGE_BACKEND=cassandra"
                )
            if self.cassandra.username and not self.cassandra.password:
                raise ValueError("CASSANDRA_PASSWORD is required when CASSANDRA_USERNAME is set")
        elif self.storage_backend == StorageBackendKind.SQLITE:
            if self.sqlite.fetch_size < 1:
                raise ValueError("SQLITE_FETCH_SIZE must be at least 1")
            if not os.path.exists(self.sqlite.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.sqlite.data_dir}. "
                    "It will be created on connect."
                )
        elif self.storage_backend == StorageBackendKind.MEMORY:
            logger.warning("Using in-memory storage; all documents are lost on shutdown")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": self.storage_backend.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "data_dir": self.sqlite.data_dir
                if self.storage_backend == StorageBackendKind.SQLITE
                else None,
                "cassandra_contact_points": self.cassandra.contact_points
                if self.storage_backend == StorageBackendKind.CASSANDRA
                else None,
                "cassandra_auth": bool(self.cassandra.username)
                if self.storage_backend == StorageBackendKind.CASSANDRA
                else None,
                "keyspace": self.schema.keyspace,
                "replication_factor": self.schema.replication_factor,
                "log_level": self.observability.log_level,
            },
        )
