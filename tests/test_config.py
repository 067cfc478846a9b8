import pytest

from estate_advisor.config import BASE_DIR, load_settings

ENV_KEYS = [
    "GEMINI_MODEL",
    "GEMINI_MODEL_CLASSIFIER",
    "HISTORY_PAIRS",
    "LISTINGS_PATH",
    "ADMIN_NUMBERS",
    "IGNORE_SAVED_CONTACTS",
    "SUPABASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.history_pairs == 5
    assert settings.gemini_model_classifier == settings.gemini_model
    assert settings.listings_path == (BASE_DIR / "data" / "listings.json").resolve()
    assert settings.admin_numbers == ()
    assert settings.ignore_saved_contacts is False


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("GEMINI_MODEL", "gemini-pro")
    monkeypatch.setenv("GEMINI_MODEL_CLASSIFIER", "gemini-flash")
    monkeypatch.setenv("HISTORY_PAIRS", "3")
    monkeypatch.setenv("LISTINGS_PATH", str(tmp_path / "inv.json"))
    monkeypatch.setenv("ADMIN_NUMBERS", "5218100000000, 5218100000009,,")
    monkeypatch.setenv("IGNORE_SAVED_CONTACTS", "true")
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.co/")

    settings = load_settings()

    assert settings.gemini_model_classifier == "gemini-flash"
    assert settings.history_pairs == 3
    assert settings.listings_path == tmp_path / "inv.json"
    assert settings.admin_numbers == ("5218100000000", "5218100000009")
    assert settings.ignore_saved_contacts is True
    assert settings.supabase_url == "https://db.example.co"


def test_invalid_integer_raises(monkeypatch):
    monkeypatch.setenv("HISTORY_PAIRS", "many")
    with pytest.raises(ValueError):
        load_settings()
