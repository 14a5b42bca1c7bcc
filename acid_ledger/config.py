"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List, Optional, Tuple


class AcidLedgerConfig(BaseSettings):
    """ACID ledger demo configuration"""

    # Transaction log sink
    log_sink: str = "memory"  # memory or sqlite
    database_path: str = "acid_ledger.db"

    # Seed data used by init_accounts when no explicit seed is given
    seed_accounts: str = "ACC001:1000.00,ACC002:500.00,ACC003:750.00"

    # Concurrency configuration
    lock_timeout_seconds: Optional[float] = None  # None blocks until the lock is free
    optimistic_think_time: float = 0.1  # Pause between read and write to widen the conflict window
    pessimistic_think_time: float = 0.5  # Time the locks are held for
    concurrent_start_delay: float = 0.05  # Head start of the first transfer in concurrent demos

    # Isolation probe configuration
    probe_first_wait: float = 3.0
    probe_second_wait: float = 2.0
    long_update_seconds: float = 5.0

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    class Config:
        env_prefix = "ACID_LEDGER_"
        env_file = ".env"
        case_sensitive = False


def parse_seed_accounts(raw: str) -> List[Tuple[str, Decimal]]:
    """
    Parse a seed string of the form "ID:BALANCE,ID:BALANCE".

    Raises:
        ValueError: If an entry is malformed or an id repeats
    """
    seed: List[Tuple[str, Decimal]] = []
    seen = set()
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        account_id, sep, balance = entry.partition(":")
        account_id = account_id.strip()
        if not sep or not account_id:
            raise ValueError(f"Malformed seed entry: {entry!r}")
        if account_id in seen:
            raise ValueError(f"Duplicate account id in seed: {account_id}")
        seen.add(account_id)
        seed.append((account_id, Decimal(balance.strip())))
    return seed


# Global configuration instance
config = AcidLedgerConfig()


def get_config() -> AcidLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AcidLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = AcidLedgerConfig()
    return config
