"""Flow content configuration and runtime settings.

Content (company name, helpline, greeting, notification recipients) is loaded
from flows/<flow_id>/config.json. Runtime settings (database, SMTP, timeouts)
come from environment variables.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from payanaagent.state import CHECKPOINTS


class FlowConfigError(Exception):
    """Raised when a flow configuration cannot be loaded or is invalid."""


_REQUIRED_SECTIONS = ("company", "messaging", "notifications")

_DEFAULT_BASE_PATH = Path(__file__).resolve().parent.parent / "flows"


def load_flow_config(
    flow_id: str,
    base_path: str | None = None,
) -> dict:
    """Load and check flows/<flow_id>/config.json.

    Raises:
        FlowConfigError: If the file is missing, is not valid JSON, or a
                         section has the wrong shape.
    """
    config_path = Path(base_path or _DEFAULT_BASE_PATH) / flow_id / "config.json"
    if not config_path.is_file():
        raise FlowConfigError(f"Flow configuration not found: {config_path}")

    try:
        config = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise FlowConfigError(
            f"Flow configuration has invalid JSON: {config_path}: {e}"
        ) from e

    problems = check_flow_config(config)
    if problems:
        raise FlowConfigError(f"Invalid flow configuration {config_path}: {'; '.join(problems)}")
    return config


def check_flow_config(config) -> list[str]:
    """Return a list of problems with a parsed flow configuration."""
    if not isinstance(config, dict):
        return ["top level must be an object"]

    problems = []
    for section in _REQUIRED_SECTIONS:
        if section not in config:
            problems.append(f"missing required section '{section}'")
        elif not isinstance(config[section], dict):
            problems.append(f"section '{section}' must be an object")
    if problems:
        return problems

    for key in ("name", "helpline"):
        if not isinstance(config["company"].get(key, ""), str):
            problems.append(f"company.{key} must be a string")

    for key, value in config["messaging"].items():
        if not isinstance(value, str):
            problems.append(f"messaging.{key} must be a string")

    notifications = config["notifications"]
    admin_email = notifications.get("admin_email")
    if admin_email is not None and not (isinstance(admin_email, str) and "@" in admin_email):
        problems.append("notifications.admin_email must be an email address")
    if not isinstance(notifications.get("cc_applicant", True), bool):
        problems.append("notifications.cc_applicant must be true or false")

    subjects = notifications.get("subjects", {})
    if not isinstance(subjects, dict):
        problems.append("notifications.subjects must be an object")
    else:
        for checkpoint, template in subjects.items():
            if checkpoint not in CHECKPOINTS:
                problems.append(f"notifications.subjects has unknown checkpoint '{checkpoint}'")
            elif not isinstance(template, str):
                problems.append(f"notifications.subjects.{checkpoint} must be a string")

    return problems


def messaging_from_config(config: dict) -> dict:
    """Flatten the content sections into the dict the flow engine reads."""
    company = config.get("company", {})
    messaging = dict(config.get("messaging", {}))
    if "name" in company:
        messaging.setdefault("company_name", company["name"])
    if "helpline" in company:
        messaging.setdefault("helpline", company["helpline"])
    return messaging


@dataclass
class Settings:
    database_url: str | None = None
    flow_id: str = "payana"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    admin_email: str | None = None
    notifier_timeout: float = 10.0
    typing_timeout: float = 3.0
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    host: str = "0.0.0.0"
    port: int = 8000


def _number(env, name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise FlowConfigError(f"{name} must be a number, got {raw!r}") from e


def load_settings(environ: dict | None = None) -> Settings:
    """Build Settings from environment variables (or an explicit mapping)."""
    env = os.environ if environ is None else environ

    def get(name: str, default=None):
        value = env.get(name)
        return default if value in (None, "") else value

    smtp_port = _number(env, "SMTP_PORT", 587, int)
    notifier_timeout = _number(env, "NOTIFIER_TIMEOUT", 10.0, float)
    typing_timeout = _number(env, "TYPING_TIMEOUT", 3.0, float)
    port = _number(env, "PORT", 8000, int)

    origins = get("CORS_ORIGINS", "http://localhost:5173")

    return Settings(
        database_url=get("DATABASE_URL"),
        flow_id=get("FLOW_ID", "payana"),
        smtp_host=get("SMTP_HOST"),
        smtp_port=smtp_port,
        smtp_user=get("SMTP_USER"),
        smtp_password=get("SMTP_PASSWORD"),
        smtp_use_tls=str(get("SMTP_USE_TLS", "true")).lower() != "false",
        admin_email=get("ADMIN_EMAIL"),
        notifier_timeout=notifier_timeout,
        typing_timeout=typing_timeout,
        log_level=get("LOG_LEVEL", "INFO"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        host=get("HOST", "0.0.0.0"),
        port=port,
    )
