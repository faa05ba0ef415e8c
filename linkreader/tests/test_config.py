import json

from linkreader.config import load_service_config, parse_service_config
from linkreader.serve import resolve_port


def test_config_loader_reads_provider_blocks(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "qwen": {"apiKey": "sk-test", "baseUrl": "https://qwen.example/v1", "model": "qwen-vl-plus"},
                "glm4": {"apiKey": "", "model": "glm-4"},
                "fallback": {"useOCR": False, "maxFileSize": 2048},
                "timeouts": {"providerCall": 30},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("LINKREADER_CONFIG", str(config_path))

    config = load_service_config()

    assert config.source == str(config_path)
    assert config.provider("qwen").base_url == "https://qwen.example/v1"
    assert config.configured_providers() == ["qwen"]
    assert config.fallback.use_ocr is False
    assert config.fallback.max_file_size == 2048
    assert config.timeouts.provider_call == 30
    assert config.timeouts.keepalive_interval == 30
    assert config.timeouts.upload_poll_timeout == 30


def test_config_loader_prefers_production_file(tmp_path, monkeypatch):
    (tmp_path / "config.production.json").write_text(json.dumps({"seed": {"apiKey": "prod"}}), encoding="utf-8")
    (tmp_path / "config.json").write_text(json.dumps({"seed": {"apiKey": "dev"}}), encoding="utf-8")
    monkeypatch.delenv("LINKREADER_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)

    config = load_service_config()

    assert config.provider("seed").api_key == "prod"


def test_missing_config_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKREADER_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)

    config = load_service_config()

    assert config.source == "default"
    assert config.configured_providers() == []
    assert config.fallback.use_ocr is True
    assert config.fallback.max_file_size == 10 * 1024 * 1024
    assert "qwen" in config.providers


def test_invalid_config_falls_back_to_defaults(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    wrong_shape = tmp_path / "list.json"
    wrong_shape.write_text("[1, 2]", encoding="utf-8")
    bad_value = tmp_path / "bad.json"
    bad_value.write_text(json.dumps({"fallback": {"maxFileSize": -1}}), encoding="utf-8")

    for path in (broken, wrong_shape, bad_value):
        assert load_service_config(str(path)).source == "default"


def test_unknown_provider_lookup_returns_unconfigured_settings():
    config = parse_service_config({})

    assert config.provider("volcengine").is_configured is False


def test_port_resolution_order():
    assert resolve_port(8080, {"PORT": "9000"}) == 8080
    assert resolve_port(None, {"PORT": "9000"}) == 9000
    assert resolve_port(None, {}) == 80
    assert resolve_port(None, {"PORT": "http"}) == 80
