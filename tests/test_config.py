"""Tests for settings loading."""

from ytgenius.config import Settings


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("DATA_DIR", raising=False)

    s = Settings()

    assert s.data_dir == "data"
    assert s.gemini_api_key is None
    assert s.gemini_image_model == "gemini-2.0-flash-preview-image-generation"
    assert s.default_aspect_ratio == "16:9"


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    monkeypatch.setenv("GEMINI_IMAGE_MODEL", "other-model")
    monkeypatch.setenv("PORT", "9000")

    s = Settings()

    assert s.gemini_api_key == "env-key"
    assert s.gemini_image_model == "other-model"
    assert s.port == 9000


def test_dotenv_file(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    (tmp_path / ".env").write_text("GEMINI_API_KEY=from-dotenv\n", encoding="utf-8")

    assert Settings().gemini_api_key == "from-dotenv"
