"""Pydantic models for connection profiles and backup options."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ============================================================================
# Defaults
# ============================================================================

DEFAULT_EXCLUDED_SCHEMAS: list[str] = [
    "information_schema",
    "pg_catalog",
    "pg_toast",
    "pg_temp_1",
    "pg_toast_temp_1",
    "auth",
    "storage",
    "realtime",
    "extensions",
    "supabase_functions",
    "supabase_migrations",
    "pgsodium",
    "pgsodium_masks",
    "vault",
    "graphql",
    "graphql_public",
]

DEFAULT_EXCLUDED_DATA_TABLES: list[str] = [
    "auth.users",
    "auth.sessions",
    "auth.refresh_tokens",
    "auth.instances",
    "auth.audit_log_entries",
    "auth.flow_state",
    "auth.identities",
    "storage.objects",
    "storage.buckets",
    "storage.migrations",
    "realtime.subscription",
    "realtime.schema_migrations",
    "pgsodium.key",
    "vault.secrets",
]

EXPORT_FORMATS = frozenset({"sql", "json", "csv"})


# ============================================================================
# Connection Profiles
# ============================================================================


class DatabaseProfile(BaseModel):
    """Connection profile from db.toml.

    ``provider = "supabase"`` expects the project URL and a service key;
    ``provider = "postgres"`` expects a database URL and ignores ``key``.
    """

    url: str
    key: str = ""
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "supabase"

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in ("supabase", "postgres"):
            raise ValueError(f"Unknown provider '{value}' (expected supabase or postgres)")
        return value


# ============================================================================
# Backup Options
# ============================================================================


class BackupConfig(BaseModel):
    """Options recognised by a backup run.

    Example:
        >>> config = BackupConfig(max_rows_per_table=1000, export_formats=["sql"])
        >>> config.query_timeout
        30.0
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    # Schema objects
    include_tables: bool = True
    include_views: bool = True
    include_functions: bool = True
    include_triggers: bool = True
    include_policies: bool = True
    include_indexes: bool = True
    include_sequences: bool = True
    include_enums: bool = True
    include_constraints: bool = True
    include_extensions: bool = True

    # Data
    include_data: bool = True
    max_rows_per_table: int = 100_000
    query_timeout_ms: int = 30_000

    # Output
    export_formats: list[str] = Field(default_factory=lambda: ["sql", "json", "csv"])
    include_drop_statements: bool = True
    generate_readme: bool = True

    # Exclusions
    excluded_schemas: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_SCHEMAS))
    excluded_data_tables: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_DATA_TABLES)
    )

    # Operator-supplied table list, used when every automatic tier finds nothing
    manual_tables: list[str] = Field(default_factory=list)

    @field_validator("max_rows_per_table", "query_timeout_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("export_formats")
    @classmethod
    def _known_formats(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - EXPORT_FORMATS)
        if unknown:
            raise ValueError(f"Unknown export format(s): {', '.join(unknown)}")
        # de-duplicate, keep caller order
        return list(dict.fromkeys(value))

    @property
    def query_timeout(self) -> float:
        """Per-call timeout in seconds."""
        return self.query_timeout_ms / 1000


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    backup: BackupConfig = Field(default_factory=BackupConfig)
