"""Configuration for the product catalog service.

Loads non-sensitive settings from config.yaml and secrets (connection strings,
signing key) from the environment or a .env file. Fails fast with a clear
message when something required is missing.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def _get_project_root() -> Path:
    """Directory holding config.yaml."""
    return Path(__file__).parent


def _config_path() -> Path:
    override = os.environ.get("CATALOG_CONFIG")
    if override:
        return Path(override)
    return _get_project_root() / "config.yaml"


def _load_yaml_config() -> dict:
    """Load configuration from config.yaml."""
    config_path = _config_path()
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _get_required_env(key: str) -> str:
    """Get required environment variable or raise ConfigurationError."""
    value = os.environ.get(key)
    if not value:
        raise ConfigurationError(
            f"Required environment variable '{key}' is not set. "
            f"Please add it to your .env file."
        )
    return value


def _get_optional_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get optional environment variable with default."""
    return os.environ.get(key, default)


@dataclass(frozen=True)
class DatabaseConfig:
    """Document store connection settings."""
    uri: str
    name: str = "emart"
    collection: str = "products"
    server_selection_timeout_ms: int = 5000
    timeout_ms: int = 10000


@dataclass(frozen=True)
class AuthConfig:
    """Bearer token settings."""
    jwt_secret: str
    algorithm: str = "HS256"
    product_token_ttl: int = 3600


@dataclass(frozen=True)
class CatalogConfig:
    """Catalog behaviour: identifiers and page sizes."""
    id_prefix: str = "EGM-PROD"
    id_base: int = 1001
    list_page_size: int = 1000
    category_page_size: int = 10
    search_page_size: int = 10
    highlight_limit: int = 5
    max_id_attempts: int = 5
    max_rating_attempts: int = 10


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 3000
    service_name: str = "e-mart-backend"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration container."""
    database: DatabaseConfig
    auth: AuthConfig
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config() -> AppConfig:
    """
    Load and validate all application configuration.

    Loads from config.yaml for non-sensitive settings and .env for secrets.
    The product store may live behind its own connection string
    (MONGO_URI_PRODUCTS); otherwise MONGO_URI is used.

    Returns:
        AppConfig: Validated application configuration.

    Raises:
        ConfigurationError: If required configuration is missing or invalid.
    """
    load_dotenv()

    yaml_config = _load_yaml_config()

    db_section = yaml_config.get("database", {})
    products_uri = _get_optional_env("MONGO_URI_PRODUCTS") or _get_required_env("MONGO_URI")

    database_config = DatabaseConfig(
        uri=products_uri,
        name=db_section.get("name", "emart"),
        collection=db_section.get("collection", "products"),
        server_selection_timeout_ms=int(db_section.get("server_selection_timeout_ms", 5000)),
        timeout_ms=int(db_section.get("timeout_ms", 10000)),
    )

    auth_section = yaml_config.get("auth", {})

    auth_config = AuthConfig(
        jwt_secret=_get_required_env("JWT_SECRET"),
        algorithm=auth_section.get("algorithm", "HS256"),
        product_token_ttl=int(auth_section.get("product_token_ttl", 3600)),
    )

    catalog_section = yaml_config.get("catalog", {})
    page_sizes = catalog_section.get("page_sizes", {})

    catalog_config = CatalogConfig(
        id_prefix=catalog_section.get("id_prefix", "EGM-PROD"),
        id_base=int(catalog_section.get("id_base", 1001)),
        list_page_size=int(page_sizes.get("list", 1000)),
        category_page_size=int(page_sizes.get("category", 10)),
        search_page_size=int(page_sizes.get("search", 10)),
        highlight_limit=int(page_sizes.get("highlights", 5)),
        max_id_attempts=int(catalog_section.get("max_id_attempts", 5)),
        max_rating_attempts=int(catalog_section.get("max_rating_attempts", 10)),
    )
    if catalog_config.id_base < 0:
        raise ConfigurationError("catalog.id_base must not be negative")

    server_section = yaml_config.get("server", {})
    port = _get_optional_env("PORT") or server_section.get("port", 3000)
    try:
        port = int(port)
    except ValueError:
        raise ConfigurationError(f"PORT must be an integer, got {port!r}")

    server_config = ServerConfig(
        host=server_section.get("host", "0.0.0.0"),
        port=port,
        service_name=server_section.get("service_name", "e-mart-backend"),
        cors_origins=list(server_section.get("cors_origins", ["*"])),
    )

    logging_section = yaml_config.get("logging", {})

    logging_config = LoggingConfig(
        level=_get_optional_env("LOG_LEVEL") or logging_section.get("level", "INFO"),
    )

    return AppConfig(
        database=database_config,
        auth=auth_config,
        catalog=catalog_config,
        server=server_config,
        logging=logging_config,
    )


# Module-level singleton for convenience
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the application configuration singleton.

    Lazy-loads configuration on first access.

    Raises:
        ConfigurationError: If required configuration is missing.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
