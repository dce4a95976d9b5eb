"""
Tests for environment settings and persona loading
"""

from pathlib import Path

from metalmail.config import DEFAULT_PERSONA_PATH, Persona, Settings


class TestPersona:
    def test_bundled_file_loads(self):
        persona = Persona.load(DEFAULT_PERSONA_PATH)

        assert persona.name == "Metalmail"
        assert "never invent email addresses" in persona.constraints

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Persona.load(tmp_path / "absent.yaml") == Persona()

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "persona.yaml"
        path.write_text(
            "tone: warm\nvalues: brevity\nconstraints:\nmood: cheerful\n",
            encoding="utf-8",
        )

        persona = Persona.load(path)

        assert persona.tone == "warm"
        assert persona.values == ["brevity"]
        assert persona.constraints == Persona().constraints
        assert persona.style == Persona().style
        assert not hasattr(persona, "mood")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "persona.yaml"
        path.write_text("", encoding="utf-8")

        assert Persona.load(path) == Persona()

    def test_render_system(self):
        persona = Persona(system_prefix="You help with email.", tone="calm", style="", values=["accurate"], constraints=[])

        assert persona.render_system("Current thread: none") == (
            "You help with email.\nTone: calm.\nValues: accurate.\nCurrent thread: none"
        )


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("OPENAI_MODEL", "MAX_TOOL_ROUNDS", "CORS_ORIGINS", "PORT", "PERSONA_PATH"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.openai_model == "gpt-4o-mini"
        assert settings.max_tool_rounds == 3
        assert settings.cors_origins == ["*"]
        assert settings.port == 4000
        assert settings.persona_path == DEFAULT_PERSONA_PATH

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:1234/")
        monkeypatch.setenv("MAX_TOOL_ROUNDS", "0")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
        monkeypatch.setenv("PORT", "not-a-port")
        monkeypatch.setenv("PERSONA_PATH", "/tmp/persona.yaml")

        settings = Settings.from_env()

        assert settings.openai_base_url == "http://localhost:1234"
        assert settings.max_tool_rounds == 1
        assert settings.cors_origins == ["http://a.test", "http://b.test"]
        assert settings.port == 4000
        assert settings.persona_path == Path("/tmp/persona.yaml")
