"""Contact auditor configuration loader."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re
from typing import Any, Mapping

import yaml


_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")
ISOLATION_LEVELS: tuple[str, ...] = ("read_uncommitted", "read_committed")
DEFAULT_ISOLATION_LEVEL = "read_uncommitted"
DEFAULT_FETCH_SIZE = 500
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ContactAuditConfigError(ValueError):
    """Raised when contact auditor config payloads are invalid."""


@dataclass(frozen=True)
class ContactAuditDbConfig:
    dsn: str
    connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    fetch_size: int = DEFAULT_FETCH_SIZE
    # Dirty reads are accepted: the audit is an offline pass over a live store.
    isolation_level: str = DEFAULT_ISOLATION_LEVEL


@dataclass(frozen=True)
class ContactAuditOutputConfig:
    results_dir: Path = Path(".")


@dataclass(frozen=True)
class ContactAuditLoggingConfig:
    level: str = "INFO"
    log_path: str | None = None


@dataclass(frozen=True)
class ContactAuditorConfig:
    db: ContactAuditDbConfig
    forbidden_email_domains: tuple[str, ...]
    output: ContactAuditOutputConfig
    logging: ContactAuditLoggingConfig


def load_auditor_config(path: Path | str) -> ContactAuditorConfig:
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ContactAuditConfigError(f"Error reading config file: {str(config_path)!r}: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ContactAuditConfigError(f"Couldn't parse config: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ContactAuditConfigError("contact auditor config must be a mapping")
    section = payload.get("contact_auditor")
    if section is None:
        # Original JSON configs used the ContactAuditor/DB key casing.
        section = payload.get("ContactAuditor")
    if not isinstance(section, Mapping):
        raise ContactAuditConfigError("contact_auditor must be a mapping")
    return parse_auditor_config(section, base_dir=config_path.parent)


def parse_auditor_config(section: Mapping[str, Any], *, base_dir: Path | None = None) -> ContactAuditorConfig:
    db_raw = section.get("db", section.get("DB"))
    if not isinstance(db_raw, Mapping):
        raise ContactAuditConfigError("contact_auditor.db must be a mapping")
    db = _parse_db(db_raw, base_dir=base_dir)

    policy_raw = section.get("email_policy") or {}
    if not isinstance(policy_raw, Mapping):
        raise ContactAuditConfigError("contact_auditor.email_policy must be a mapping")
    forbidden = policy_raw.get("forbidden_domains") or []
    if not isinstance(forbidden, list):
        raise ContactAuditConfigError("email_policy.forbidden_domains must be a list")
    forbidden_domains = tuple(sorted({str(item).strip().lower() for item in forbidden if str(item or "").strip()}))

    output_raw = section.get("output") or {}
    if not isinstance(output_raw, Mapping):
        raise ContactAuditConfigError("contact_auditor.output must be a mapping")
    results_dir = str(_resolve_env_token(output_raw.get("results_dir")) or ".").strip() or "."

    logging_raw = section.get("logging") or {}
    if not isinstance(logging_raw, Mapping):
        raise ContactAuditConfigError("contact_auditor.logging must be a mapping")
    level = str(_resolve_env_token(logging_raw.get("level")) or "INFO").strip().upper()
    if level not in LOG_LEVELS:
        raise ContactAuditConfigError(f"logging.level must be one of {list(LOG_LEVELS)}: {level!r}")
    log_path = _none_if_blank(_resolve_env_token(logging_raw.get("log_path")))

    return ContactAuditorConfig(
        db=db,
        forbidden_email_domains=forbidden_domains,
        output=ContactAuditOutputConfig(results_dir=Path(results_dir)),
        logging=ContactAuditLoggingConfig(level=level, log_path=log_path),
    )


def _parse_db(db_raw: Mapping[str, Any], *, base_dir: Path | None) -> ContactAuditDbConfig:
    dsn_file = _none_if_blank(_resolve_env_token(db_raw.get("dsn_file", db_raw.get("DBConnectFile"))))
    if dsn_file:
        dsn_path = Path(dsn_file)
        if not dsn_path.is_absolute() and base_dir is not None and not dsn_path.exists():
            dsn_path = base_dir / dsn_path
        try:
            dsn = dsn_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ContactAuditConfigError(f"Couldn't load DSN from {str(dsn_path)!r}: {exc}") from exc
    else:
        dsn = str(_resolve_env_token(db_raw.get("dsn", db_raw.get("DBConnect"))) or "").strip()
    if not dsn:
        raise ContactAuditConfigError("db requires dsn or dsn_file")

    isolation_level = str(_resolve_env_token(db_raw.get("isolation_level")) or DEFAULT_ISOLATION_LEVEL)
    isolation_level = isolation_level.strip().lower().replace("-", "_").replace(" ", "_")
    if isolation_level not in ISOLATION_LEVELS:
        raise ContactAuditConfigError(f"db.isolation_level must be one of {list(ISOLATION_LEVELS)}: {isolation_level!r}")

    return ContactAuditDbConfig(
        dsn=dsn,
        connect_timeout_seconds=_positive_int(
            _resolve_env_token(db_raw.get("connect_timeout_seconds", DEFAULT_CONNECT_TIMEOUT_SECONDS)),
            "db.connect_timeout_seconds",
        ),
        fetch_size=_positive_int(_resolve_env_token(db_raw.get("fetch_size", DEFAULT_FETCH_SIZE)), "db.fetch_size"),
        isolation_level=isolation_level,
    )


def _resolve_env_token(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    token = value.strip()
    match = _ENV_PATTERN.fullmatch(token)
    if not match:
        return value
    key = match.group(1)
    default = match.group(2) or ""
    return os.getenv(key, default)


def _none_if_blank(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def _positive_int(value: Any, field_name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ContactAuditConfigError(f"{field_name} must be a positive integer") from exc
    if parsed <= 0:
        raise ContactAuditConfigError(f"{field_name} must be a positive integer")
    return parsed
