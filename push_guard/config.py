"""Configuration loading for push-guard."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from push_guard.models import Exclusion, ExclusionType

CONFIG_FILENAMES = (".push-guard.toml", "push-guard.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("push_guard", "push-guard")

DEFAULT_DOCS_URL = (
    "https://docs.gitlab.com/user/application_security/secret_detection/"
    "secret_push_protection/#resolve-a-blocked-push"
)
PROFILE_TRIGGERS = {"push", "pipeline", "schedule"}


@dataclass(slots=True)
class ThresholdsConfig:
    """Size and volume limits enforced before scanning."""

    max_changed_paths: int = 3150
    max_lines_per_request: int = 350_000
    paths_batch_size: int = 50
    payload_bytes_limit: int = 1_048_576

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_changed_paths": self.max_changed_paths,
            "max_lines_per_request": self.max_lines_per_request,
            "paths_batch_size": self.paths_batch_size,
            "payload_bytes_limit": self.payload_bytes_limit,
        }


@dataclass(slots=True)
class DetectionConfig:
    """Detection engine selection and remote service settings."""

    remote_enabled: bool = False
    managed_tier: bool = False
    dedicated_instance: bool = False
    service_url: str | None = None
    auth_token: str | None = None
    timeout_seconds: float = 30.0
    local_timeout_seconds: float = 60.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "remote_enabled": self.remote_enabled,
            "managed_tier": self.managed_tier,
            "dedicated_instance": self.dedicated_instance,
            "service_url": self.service_url,
            "auth_token": "***" if self.auth_token else None,
            "timeout_seconds": self.timeout_seconds,
            "local_timeout_seconds": self.local_timeout_seconds,
        }


@dataclass(slots=True)
class EligibilityConfig:
    """Resolved settings and entitlements that decide whether a push is scanned."""

    global_enabled: bool = True
    project_enabled: bool = True
    licensed: bool = True
    profile_entitled: bool = False
    public_project: bool = False
    public_auto_enable: bool = False
    profile_trigger: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_enabled": self.global_enabled,
            "project_enabled": self.project_enabled,
            "licensed": self.licensed,
            "profile_entitled": self.profile_entitled,
            "public_project": self.public_project,
            "public_auto_enable": self.public_auto_enable,
            "profile_trigger": self.profile_trigger,
        }


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    format: str = "human"
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    eligibility: EligibilityConfig = field(default_factory=EligibilityConfig)
    exclusions: list[Exclusion] = field(default_factory=list)
    docs_url: str = DEFAULT_DOCS_URL
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "thresholds": self.thresholds.to_dict(),
            "detection": self.detection.to_dict(),
            "eligibility": self.eligibility.to_dict(),
            "exclusions": [item.to_dict() for item in self.exclusions],
            "docs_url": self.docs_url,
            "source": self.source,
        }


def load_app_config(repo: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from explicit path or repository-local files with precedence."""
    repo = repo.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (repo / config_path)
        if not resolved.exists():
            raise ValueError(f"Config file does not exist: {resolved}")
        mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
        return _from_mapping(mapping, source=str(resolved))

    for filename in CONFIG_FILENAMES:
        resolved = repo / filename
        if resolved.exists():
            mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
            return _from_mapping(mapping, source=str(resolved))

    pyproject_path = repo / PYPROJECT_FILENAME
    if pyproject_path.exists():
        mapping = _extract_config_mapping(_load_toml(pyproject_path), source_path=pyproject_path)
        if mapping:
            return _from_mapping(mapping, source=str(pyproject_path))

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config template."""
    return "\n".join(
        [
            'format = "human"',
            f'docs_url = "{DEFAULT_DOCS_URL}"',
            "",
            "[thresholds]",
            "max_changed_paths = 3150",
            "max_lines_per_request = 350000",
            "paths_batch_size = 50",
            "payload_bytes_limit = 1048576",
            "",
            "[detection]",
            "remote_enabled = false",
            "managed_tier = false",
            "dedicated_instance = false",
            '# service_url = "https://secret-detection.example.com"',
            "timeout_seconds = 30.0",
            "local_timeout_seconds = 60.0",
            "",
            "[eligibility]",
            "global_enabled = true",
            "project_enabled = true",
            "licensed = true",
            "profile_entitled = false",
            "public_project = false",
            "public_auto_enable = false",
            '# profile_trigger = "push"',
            "",
            "[[exclusions]]",
            'type = "path"',
            'value = "tests/fixtures/**/*"',
            "",
            "[[exclusions]]",
            'type = "rule"',
            'value = "Base64 High Entropy String"',
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _extract_config_mapping(loaded: dict[str, Any], *, source_path: Path) -> dict[str, Any]:
    if source_path.name == PYPROJECT_FILENAME:
        section = _find_pyproject_tool_section(loaded)
        return section if section is not None else {}

    tool_section = _find_pyproject_tool_section(loaded)
    if tool_section is not None:
        return tool_section
    return loaded


def _find_pyproject_tool_section(loaded: dict[str, Any]) -> dict[str, Any] | None:
    tool = loaded.get("tool")
    if not isinstance(tool, dict):
        return None
    for key in PYPROJECT_TOOL_KEYS:
        section = tool.get(key)
        if isinstance(section, dict):
            return section
    return None


def _from_mapping(mapping: dict[str, Any], *, source: str) -> AppConfig:
    thresholds_mapping = _as_table(mapping.get("thresholds"), "thresholds")
    detection_mapping = _as_table(mapping.get("detection"), "detection")
    eligibility_mapping = _as_table(mapping.get("eligibility"), "eligibility")

    format_value = _as_choice(mapping.get("format", "human"), {"human", "json"}, "format")
    docs_url = _as_str(mapping.get("docs_url", DEFAULT_DOCS_URL), "docs_url")

    return AppConfig(
        format=format_value,
        thresholds=_parse_thresholds_config(thresholds_mapping),
        detection=_parse_detection_config(detection_mapping),
        eligibility=_parse_eligibility_config(eligibility_mapping),
        exclusions=_parse_exclusions(mapping.get("exclusions"), "exclusions"),
        docs_url=docs_url,
        source=source,
    )


def _parse_thresholds_config(value: dict[str, Any]) -> ThresholdsConfig:
    defaults = ThresholdsConfig()
    return ThresholdsConfig(
        max_changed_paths=_as_positive_int(
            value.get("max_changed_paths", defaults.max_changed_paths),
            "thresholds.max_changed_paths",
        ),
        max_lines_per_request=_as_positive_int(
            value.get("max_lines_per_request", defaults.max_lines_per_request),
            "thresholds.max_lines_per_request",
        ),
        paths_batch_size=_as_positive_int(
            value.get("paths_batch_size", defaults.paths_batch_size),
            "thresholds.paths_batch_size",
        ),
        payload_bytes_limit=_as_positive_int(
            value.get("payload_bytes_limit", defaults.payload_bytes_limit),
            "thresholds.payload_bytes_limit",
        ),
    )


def _parse_detection_config(value: dict[str, Any]) -> DetectionConfig:
    defaults = DetectionConfig()
    timeout = _as_float(
        value.get("timeout_seconds", defaults.timeout_seconds), "detection.timeout_seconds"
    )
    local_timeout = _as_float(
        value.get("local_timeout_seconds", defaults.local_timeout_seconds),
        "detection.local_timeout_seconds",
    )
    if timeout <= 0:
        raise ValueError("detection.timeout_seconds must be > 0")
    if local_timeout <= 0:
        raise ValueError("detection.local_timeout_seconds must be > 0")

    return DetectionConfig(
        remote_enabled=_as_bool(value.get("remote_enabled", False), "detection.remote_enabled"),
        managed_tier=_as_bool(value.get("managed_tier", False), "detection.managed_tier"),
        dedicated_instance=_as_bool(
            value.get("dedicated_instance", False), "detection.dedicated_instance"
        ),
        service_url=_as_optional_str(value.get("service_url"), "detection.service_url"),
        auth_token=_as_optional_str(value.get("auth_token"), "detection.auth_token"),
        timeout_seconds=timeout,
        local_timeout_seconds=local_timeout,
    )


def _parse_eligibility_config(value: dict[str, Any]) -> EligibilityConfig:
    raw_trigger = value.get("profile_trigger")
    profile_trigger = (
        None
        if raw_trigger is None
        else _as_choice(raw_trigger, PROFILE_TRIGGERS, "eligibility.profile_trigger")
    )
    return EligibilityConfig(
        global_enabled=_as_bool(value.get("global_enabled", True), "eligibility.global_enabled"),
        project_enabled=_as_bool(value.get("project_enabled", True), "eligibility.project_enabled"),
        licensed=_as_bool(value.get("licensed", True), "eligibility.licensed"),
        profile_entitled=_as_bool(
            value.get("profile_entitled", False), "eligibility.profile_entitled"
        ),
        public_project=_as_bool(value.get("public_project", False), "eligibility.public_project"),
        public_auto_enable=_as_bool(
            value.get("public_auto_enable", False), "eligibility.public_auto_enable"
        ),
        profile_trigger=profile_trigger,
    )


def _parse_exclusions(value: Any, field_name: str) -> list[Exclusion]:
    items = _as_table_list(value, field_name)
    allowed = {item.value for item in ExclusionType}
    parsed: list[Exclusion] = []
    for item in items:
        exclusion_type = _as_choice(item.get("type"), allowed, f"{field_name}.type")
        parsed.append(
            Exclusion(
                type=ExclusionType(exclusion_type),
                value=_as_str(item.get("value"), f"{field_name}.value"),
            )
        )
    return parsed


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be a table/object")
    return value


def _as_table_list(value: Any, field_name: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list of tables")
    output: list[dict[str, Any]] = []
    for item in value:
        if not isinstance(item, dict):
            raise ValueError(f"{field_name} must be a list of tables")
        output.append(item)
    return output


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    return value


def _as_optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, field_name) or None


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ValueError(f"{field_name} must be one of: {choices}")
    return value


def _as_positive_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"{field_name} must be an integer")
    if raw <= 0:
        raise ValueError(f"{field_name} must be > 0")
    return raw


def _as_bool(raw: Any, field_name: str) -> bool:
    if not isinstance(raw, bool):
        raise ValueError(f"{field_name} must be a boolean")
    return raw


def _as_float(raw: Any, field_name: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    return float(raw)
