from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, data sources, and conversation limits."""
    gemini_api_key: str
    gemini_model: str
    gemini_model_classifier: str
    prompts_dir: Path
    listings_path: Path
    blacklist_path: Path
    history_pairs: int
    session_timeout_minutes: int
    typing_delay_min: float
    typing_delay_max: float
    typing_delay_per_char: float
    supabase_url: str
    supabase_key: str
    supabase_listings_table: str
    supabase_contacts_table: str
    contact_list_ttl_seconds: int
    admin_numbers: Tuple[str, ...]
    escalation_numbers: Tuple[str, ...]
    ignore_saved_contacts: bool
    whatsapp_phone_number_id: str
    whatsapp_access_token: str
    whatsapp_app_secret: str
    whatsapp_verify_token: str
    whatsapp_api_version: str


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid integer/float env values raise ValueError.
    If Removed: App cannot configure models, listings, or limits and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data paths first, then build Settings from the environment.
    listings_path = _path_from_env("LISTINGS_PATH", BASE_DIR / "data" / "listings.json")
    blacklist_path = _path_from_env("BLACKLIST_PATH", BASE_DIR / "data" / "blacklist.json")
    gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=gemini_model,
        gemini_model_classifier=os.getenv("GEMINI_MODEL_CLASSIFIER") or gemini_model,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        listings_path=listings_path,
        blacklist_path=blacklist_path,
        history_pairs=int(os.getenv("HISTORY_PAIRS", "5")),
        session_timeout_minutes=int(os.getenv("SESSION_TIMEOUT_MINUTES", "30")),
        typing_delay_min=float(os.getenv("TYPING_DELAY_MIN", "1.0")),
        typing_delay_max=float(os.getenv("TYPING_DELAY_MAX", "5.0")),
        typing_delay_per_char=float(os.getenv("TYPING_DELAY_PER_CHAR", "0.03")),
        supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_key=os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY", ""),
        supabase_listings_table=os.getenv("SUPABASE_LISTINGS_TABLE", "propiedades"),
        supabase_contacts_table=os.getenv("SUPABASE_CONTACTS_TABLE", "watsapps"),
        contact_list_ttl_seconds=int(os.getenv("CONTACT_LIST_TTL_SECONDS", "60")),
        admin_numbers=_split_numbers(os.getenv("ADMIN_NUMBERS")),
        escalation_numbers=_split_numbers(os.getenv("ESCALATION_NUMBERS")),
        ignore_saved_contacts=_env_flag("IGNORE_SAVED_CONTACTS"),
        whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID", ""),
        whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN", ""),
        whatsapp_app_secret=os.getenv("WHATSAPP_APP_SECRET", ""),
        whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN", "estate-advisor-verify"),
        whatsapp_api_version=os.getenv("WHATSAPP_API_VERSION", "v18.0"),
    )


def _path_from_env(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if value:
        return Path(value)
    return default.resolve()


def _split_numbers(raw: Optional[str]) -> Tuple[str, ...]:
    """Purpose: Parse a comma-separated phone list from the environment.
    Inputs/Outputs: Input is the raw env value; output is a tuple of trimmed numbers.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: Returns an empty tuple for missing or blank values.
    If Removed: ADMIN_NUMBERS and ESCALATION_NUMBERS cannot be configured.
    Testing Notes: "a, b,," -> ("a", "b").
    """
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}
