from __future__ import annotations

import json

import pytest

from payanaagent.config import (
    FlowConfigError,
    check_flow_config,
    load_flow_config,
    load_settings,
    messaging_from_config,
)


def write_config(tmp_path, flow_id, data):
    folder = tmp_path / flow_id
    folder.mkdir()
    (folder / "config.json").write_text(json.dumps(data), encoding="utf-8")


def test_bundled_flow_config_loads():
    config = load_flow_config("payana")
    messaging = messaging_from_config(config)
    assert messaging["company_name"] == "PayanaOverseas"
    assert messaging["helpline"] == "+91 9003619777"
    assert "greeting" in messaging


def test_missing_config_raises(tmp_path):
    with pytest.raises(FlowConfigError, match="not found"):
        load_flow_config("nope", base_path=str(tmp_path))


def test_invalid_json_raises(tmp_path):
    folder = tmp_path / "broken"
    folder.mkdir()
    (folder / "config.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(FlowConfigError, match="invalid JSON"):
        load_flow_config("broken", base_path=str(tmp_path))


def test_missing_section_raises(tmp_path):
    write_config(tmp_path, "partial", {"company": {}, "messaging": {}})
    with pytest.raises(FlowConfigError, match="notifications"):
        load_flow_config("partial", base_path=str(tmp_path))


def test_settings_defaults():
    settings = load_settings({})
    assert settings.database_url is None
    assert settings.flow_id == "payana"
    assert settings.notifier_timeout == 10.0
    assert settings.typing_timeout == 3.0
    assert settings.cors_origins == ["http://localhost:5173"]


def test_settings_from_environment():
    settings = load_settings({
        "DATABASE_URL": "postgresql://db/payana",
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": "2525",
        "NOTIFIER_TIMEOUT": "2.5",
        "CORS_ORIGINS": "https://a.example, https://b.example",
        "SMTP_USE_TLS": "false",
    })
    assert settings.database_url == "postgresql://db/payana"
    assert settings.smtp_port == 2525
    assert settings.notifier_timeout == 2.5
    assert settings.smtp_use_tls is False
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_settings_rejects_bad_numbers():
    with pytest.raises(FlowConfigError, match="SMTP_PORT"):
        load_settings({"SMTP_PORT": "lots"})


VALID = {
    "company": {"name": "Acme", "helpline": "123"},
    "messaging": {"greeting": "Hello"},
    "notifications": {"admin_email": "ops@acme.test", "subjects": {"germanEmail": "Lead {name}"}},
}


def test_check_flow_config_accepts_bundled_shape():
    assert check_flow_config(VALID) == []
    assert check_flow_config(load_flow_config("payana")) == []


def test_check_flow_config_reports_wrong_shapes():
    assert check_flow_config([]) == ["top level must be an object"]
    assert check_flow_config({**VALID, "company": "Acme"}) == ["section 'company' must be an object"]

    problems = check_flow_config({
        "company": {"name": 42},
        "messaging": {"greeting": ["Hello"]},
        "notifications": {
            "admin_email": "nobody",
            "cc_applicant": "yes",
            "subjects": {"faxEmail": "x", "ugEmail": 7},
        },
    })
    assert problems == [
        "company.name must be a string",
        "messaging.greeting must be a string",
        "notifications.admin_email must be an email address",
        "notifications.cc_applicant must be true or false",
        "notifications.subjects has unknown checkpoint 'faxEmail'",
        "notifications.subjects.ugEmail must be a string",
    ]


def test_badly_shaped_config_raises(tmp_path):
    write_config(tmp_path, "typed", {**VALID, "notifications": {"subjects": "Lead"}})
    with pytest.raises(FlowConfigError, match="notifications.subjects must be an object"):
        load_flow_config("typed", base_path=str(tmp_path))
