"""
Configuration Tests
===================
"""

from specbridge.config import Settings, load_config


class TestLoadConfig:
    """Tests for YAML loading and environment overrides."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ("PORT", "SPECBRIDGE_RELAY_PORT", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(name, raising=False)

        settings = load_config(str(tmp_path / "missing.yaml"))

        assert settings.relay.port == 3000
        assert settings.producer.min_frame_interval_ms == 66
        assert settings.detection.interval_seconds == 2.0
        assert settings.alerts.cooldown_seconds == 10.0

    def test_yaml_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SPECBRIDGE_JPEG_QUALITY", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text(
            "producer:\n"
            "  jpeg_quality: 80\n"
            "alerts:\n"
            "  feedback:\n"
            "    backend: command\n"
        )

        settings = load_config(str(path))

        assert settings.producer.jpeg_quality == 80
        assert settings.alerts.feedback.backend == "command"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("producer:\n  relay_url: http://file:3000\n")
        monkeypatch.setenv("SPECBRIDGE_RELAY_URL", "http://env:3000")
        monkeypatch.setenv("SPECBRIDGE_ALERT_COOLDOWN", "4.5")
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
        monkeypatch.delenv("PORT", raising=False)
        monkeypatch.setenv("SPECBRIDGE_RELAY_PORT", "8080")

        settings = load_config(str(path))

        assert settings.producer.relay_url == "http://env:3000"
        assert settings.alerts.cooldown_seconds == 4.5
        assert settings.detection.api_key == "sk-test"
        assert settings.relay.port == 8080

    def test_port_wins_over_relay_port(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("SPECBRIDGE_RELAY_PORT", "8080")

        settings = load_config(str(tmp_path / "missing.yaml"))
        assert settings.relay.port == 9000

    def test_settings_sections(self):
        settings = Settings()
        assert settings.relay.subscriber_queue_size == 8
        assert settings.detection.model == "google/gemini-2.5-flash"
        assert set(settings.alerts.feedback.commands) == {"shoes", "gloves"}
