import pytest

from src.batchflow.config import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BATCHFLOW_SUPABASE_URL", raising=False)
    monkeypatch.delenv("BATCHFLOW_SUPABASE_KEY", raising=False)
    settings = Settings(_env_file=None)

    assert settings.api_prefix == "/api"
    assert settings.slot_fill_mode == "single"
    assert settings.supabase_configured is False
    assert settings.data_root.is_absolute()


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BATCHFLOW_SLOT_FILL_MODE", "demand")
    monkeypatch.setenv("BATCHFLOW_OSRM_BASE_URL", "http://osrm.local:5000")
    monkeypatch.setenv("BATCHFLOW_SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("BATCHFLOW_SUPABASE_KEY", "secret")

    settings = Settings(_env_file=None)

    assert settings.slot_fill_mode == "demand"
    assert settings.osrm_base_url == "http://osrm.local:5000"
    assert settings.supabase_configured is True


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('["https://a.example", "https://b.example"]', ("https://a.example", "https://b.example")),
        ("https://a.example, https://b.example", ("https://a.example", "https://b.example")),
        ("https://a.example", ("https://a.example",)),
    ],
)
def test_allowed_origins_accept_json_or_comma_separated(monkeypatch: pytest.MonkeyPatch, raw, expected) -> None:
    monkeypatch.setenv("BATCHFLOW_FRONTEND_ALLOWED_ORIGINS", raw)
    assert Settings(_env_file=None).frontend_allowed_origins == expected


def test_rejects_unknown_slot_fill_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BATCHFLOW_SLOT_FILL_MODE", "sideways")
    with pytest.raises(ValueError):
        Settings(_env_file=None)
