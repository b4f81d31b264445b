"""Configuration management: profiles, TOML loading, and backup options.

Usage:
    >>> from supabase_backup.config import load_db_config, BackupConfig, DatabaseProfile
"""

from supabase_backup.config.loader import load_db_config
from supabase_backup.config.models import BackupConfig, DatabaseConfig, DatabaseProfile

__all__ = ["load_db_config", "BackupConfig", "DatabaseConfig", "DatabaseProfile"]
