"""Catalog client factory.

Supports two configuration modes:
1. Profile mode (db.toml + <PREFIX>DB_PROFILE): named connection profiles
2. Environment mode: SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY style
   variables, used when no db.toml (or no profile selection) exists
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from supabase_backup.adapters import AsyncPostgresCatalog, AsyncSupabaseCatalog, CatalogClient
from supabase_backup.config import load_db_config
from supabase_backup.config.models import DatabaseProfile

logger = logging.getLogger(__name__)

URL_ENV_VARS = ("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
KEY_ENV_VARS = ("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY")
MANUAL_TABLES_ENV_VAR = "MANUAL_TABLES"


class ProfileNotFoundError(Exception):
    """Raised when no database profile or credentials are configured."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str | None:
    """Get the selected profile name from ``{env_prefix}DB_PROFILE``.

    Returns:
        Profile name, or None when the variable is unset.
    """
    return os.environ.get(f"{env_prefix}DB_PROFILE") or None


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with ``[YOUR-PASSWORD]`` replaced by the
        URL-encoded ``db_password`` (unchanged if either is absent)
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def _first_env(names: tuple[str, ...]) -> str | None:
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def profile_from_env() -> DatabaseProfile | None:
    """Build a Supabase profile from environment variables, if both are set."""
    url = _first_env(URL_ENV_VARS)
    key = _first_env(KEY_ENV_VARS)
    if not url or not key:
        return None
    return DatabaseProfile(url=url, key=key, description="environment")


def manual_tables_from_env() -> list[str]:
    """Parse ``MANUAL_TABLES`` (comma-separated) into a list of names."""
    raw = os.environ.get(MANUAL_TABLES_ENV_VAR, "")
    return [name.strip() for name in raw.split(",") if name.strip()]


def resolve_profile(
    profile_name: str | None = None,
    config_path: Path | None = None,
    env_prefix: str = "",
) -> tuple[str, DatabaseProfile]:
    """Resolve the connection profile for a run.

    Priority:
    1. Explicit ``profile_name`` argument (must exist in db.toml)
    2. ``{env_prefix}DB_PROFILE`` env var (must exist in db.toml)
    3. Environment credentials (SUPABASE_URL + SUPABASE_SERVICE_ROLE_KEY)
    4. Raise ProfileNotFoundError

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If nothing is configured, or the named
            profile is not in db.toml
    """
    name = profile_name or get_active_profile_name(env_prefix)

    if name:
        try:
            config = load_db_config(config_path)
        except FileNotFoundError as e:
            raise ProfileNotFoundError(str(e)) from e
        if name not in config.profiles:
            available = ", ".join(sorted(config.profiles)) or "(none)"
            raise ProfileNotFoundError(
                f"Profile '{name}' not found in db.toml. Available: {available}"
            )
        return name, config.profiles[name]

    env_profile = profile_from_env()
    if env_profile is not None:
        return "env", env_profile

    raise ProfileNotFoundError(
        "No database configuration found.\n"
        "Either:\n"
        f"  1. Create db.toml and set {env_prefix}DB_PROFILE=<name> (or pass --profile)\n"
        "  2. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY"
    )


# ============================================================================
# Catalog Client Factory
# ============================================================================


def get_catalog_client(profile: DatabaseProfile, timeout: float = 30.0) -> CatalogClient:
    """Create the catalog client for a profile.

    Args:
        profile: Connection profile.
        timeout: Per-call timeout in seconds.

    Returns:
        ``AsyncSupabaseCatalog`` for ``provider = "supabase"``,
        ``AsyncPostgresCatalog`` for ``provider = "postgres"``.

    Raises:
        ProfileNotFoundError: If a Supabase profile has no key.
    """
    url = resolve_url(profile)

    if profile.provider == "postgres":
        logger.debug("Using direct PostgreSQL catalog client")
        return AsyncPostgresCatalog(url, timeout=timeout)

    if not profile.key:
        raise ProfileNotFoundError(
            "Supabase profiles need a service key (profile 'key' or SUPABASE_SERVICE_ROLE_KEY)"
        )
    logger.debug("Using Supabase REST catalog client")
    return AsyncSupabaseCatalog(url, profile.key, timeout=timeout)
