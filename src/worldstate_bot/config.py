import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_float_opt(name: str) -> Optional[float]:
    """
    Read an optional float from env. Returns None if unset, blank, or non-numeric.
    """
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if raw == "" or raw.lower() in {"none", "null"} or raw.startswith("#"):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _b(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {
        "1",
        "true",
        "yes",
        "y",
        "on",
    }


def _i(name: str, default: int) -> int:
    val = _env_float_opt(name)
    return default if val is None else int(val)


@dataclass
class Settings:
    # Discord REST delivery. The token is only required by the runner; tests
    # build engines around fake delivery targets.
    discord_bot_token: str = field(
        default_factory=lambda: os.getenv("DISCORD_BOT_TOKEN", "")
    )
    discord_api_base: str = field(
        default_factory=lambda: os.getenv(
            "DISCORD_API_BASE", "https://discord.com/api/v10"
        ).rstrip("/")
    )

    # --- Upstream sources ---
    # The worldState document carries both ActiveMissions (fissures) and
    # VoidTraders (Baro). Arbitrations come from a separate plain-text schedule.
    worldstate_url: str = field(
        default_factory=lambda: os.getenv(
            "WORLDSTATE_URL", "https://oracle.browse.wf/worldState.json"
        )
    )
    arbitration_url: str = field(
        default_factory=lambda: os.getenv(
            "ARBITRATION_URL", "https://browse.wf/arbys.txt"
        )
    )
    fetch_user_agent: str = field(
        default_factory=lambda: os.getenv("FETCH_USER_AGENT", "WorldstateBot/1.0.0")
    )
    fetch_timeout_seconds: float = field(
        default_factory=lambda: _env_float_opt("FETCH_TIMEOUT_SECONDS") or 10.0
    )

    # --- Feed toggles and tick intervals ---
    feature_fissures: bool = field(default_factory=lambda: _b("FEATURE_FISSURES", True))
    feature_baro: bool = field(default_factory=lambda: _b("FEATURE_BARO", True))
    feature_arbitration: bool = field(
        default_factory=lambda: _b("FEATURE_ARBITRATION", True)
    )
    fissure_interval_seconds: int = field(
        default_factory=lambda: _i("FISSURE_INTERVAL_SECONDS", 60)
    )
    # Baro rotates every two weeks; no need to poll often.
    baro_interval_seconds: int = field(
        default_factory=lambda: _i("BARO_INTERVAL_SECONDS", 300)
    )
    arbitration_interval_seconds: int = field(
        default_factory=lambda: _i("ARBITRATION_INTERVAL_SECONDS", 60)
    )

    # --- Delivery ---
    delivery_timeout_seconds: float = field(
        default_factory=lambda: _env_float_opt("DELIVERY_TIMEOUT_SECONDS") or 15.0
    )
    ping_delete_after_seconds: float = field(
        default_factory=lambda: _env_float_opt("PING_DELETE_AFTER_SECONDS") or 10.0
    )

    # --- Static lookup data ---
    dict_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DICT_DIR", "dict"))
    )
    arby_tiers_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("ARBY_TIERS_PATH", "data/arby_tiers.json")
        )
    )
    name_cache_size: int = field(default_factory=lambda: _i("NAME_CACHE_SIZE", 1000))

    # --- Persistence ---
    subscriptions_db_path: Path = field(
        default_factory=lambda: Path(
            os.getenv("SUBSCRIPTIONS_DB_PATH", "data/subscriptions.sqlite")
        )
    )

    # --- Health ---
    unhealthy_after_errors: int = field(
        default_factory=lambda: _i("UNHEALTHY_AFTER_ERRORS", 3)
    )

    # --- Logging ---
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_plain: bool = field(default_factory=lambda: _b("LOG_PLAIN", False))
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", "data")).resolve()
    )

    @property
    def regions_path(self) -> Path:
        return self.dict_dir / "ExportRegions.json"

    @property
    def language_path(self) -> Path:
        return self.dict_dir / "dict.en.json"


SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading the environment on first use."""
    global SETTINGS
    if SETTINGS is None:
        SETTINGS = Settings()
    return SETTINGS


def reset_settings() -> None:
    """Forget cached settings so the next ``get_settings()`` re-reads env."""
    global SETTINGS
    SETTINGS = None
