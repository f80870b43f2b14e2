"""Service configuration loaded from environment variables."""
from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration loaded from environment variables.

    Attributes:
        host: Bind address for the API server.
        port: Port number for the API server.
        debug: Enable debug logging and API documentation.
        cors_origins_raw: Raw comma-separated CORS origins string.
        key: Operator API key guarding the maintenance endpoints.
        database_path: Path to the SQLite database file.
        busy_timeout_ms: How long a writer waits for the database lock.
        enable_trigram_fallback: Escalate to fuzzy matching on zero results.
        enable_substring_fallback: Escalate to a source-table scan last.
        slow_query_threshold_ms: Searches slower than this are reported.
        max_query_length: Longest query accepted by the validator.
        default_search_limit: Page size when the caller gives none.
        max_search_limit: Upper bound on the search page size.
        default_autocomplete_limit: Suggestion count when none is given.
        max_autocomplete_limit: Upper bound on the suggestion count.
        maintenance_interval_seconds: Period of the index maintenance job (0 disables it).
        repair_on_startup: Rebuild out-of-sync indexes when the app starts.
    """

    model_config = SettingsConfigDict(
        env_prefix="ORGDIR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    cors_origins_raw: str = "http://localhost:5173"
    key: str = ""

    database_path: str = "orgdir.db"
    busy_timeout_ms: int = 5000

    enable_trigram_fallback: bool = True
    enable_substring_fallback: bool = True
    slow_query_threshold_ms: float = 100.0
    max_query_length: int = 500

    default_search_limit: int = 20
    max_search_limit: int = 100
    default_autocomplete_limit: int = 5
    max_autocomplete_limit: int = 10

    maintenance_interval_seconds: float = 86400.0
    repair_on_startup: bool = True

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string.

        Returns:
            List of allowed origin URLs.
        """
        return [
            origin.strip()
            for origin in self.cors_origins_raw.split(",")
            if origin.strip()
        ]
