"""Two-level (per-job / global) notifier settings and layered config loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from urllib.parse import urlsplit

import yaml

from .credentials import ChainedCredentialStore, CredentialStore


class ConfigError(ValueError):
    """Raised when a config file cannot be used."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProxyConfig:
    url: str = ""
    username: str = ""
    password: str = ""
    no_proxy: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "no_proxy", tuple(self.no_proxy))


@dataclass
class GlobalConfig:
    """Instance-wide defaults."""

    server_url: str = ""
    root_url: str = ""
    credentials_id: str = ""
    ignore_unverified_ssl: bool = False
    entity_id: str = ""
    include_build_number_in_key: bool = False
    project_key: str = ""
    prepend_parent_project_key: bool = False
    disable_inprogress_notification: bool = False
    consider_unstable_as_success: bool = False
    only_report_success: bool = False


@dataclass
class JobConfig:
    """Per-job overrides. "" / None → inherit the global default."""

    server_url: str = ""
    credentials_id: str = ""
    ignore_unverified_ssl: bool | None = None
    entity_id: str = ""
    include_build_number_in_key: bool | None = None
    project_key: str = ""
    prepend_parent_project_key: bool | None = None
    disable_inprogress_notification: bool | None = None
    consider_unstable_as_success: bool | None = None
    only_report_success: bool | None = None
    credentials: dict[str, dict] = field(default_factory=dict)


# Settings that exist at both levels and go through effective().
OVERRIDABLE = (
    "server_url",
    "credentials_id",
    "ignore_unverified_ssl",
    "entity_id",
    "include_build_number_in_key",
    "project_key",
    "prepend_parent_project_key",
    "disable_inprogress_notification",
    "consider_unstable_as_success",
    "only_report_success",
)


@dataclass(frozen=True)
class EffectiveConfig:
    """Settings resolved for one notification call."""

    server_url: str
    root_url: str
    credentials_id: str
    ignore_unverified_ssl: bool
    entity_id: str
    include_build_number_in_key: bool
    project_key: str
    prepend_parent_project_key: bool
    disable_inprogress_notification: bool
    consider_unstable_as_success: bool
    only_report_success: bool
    proxy: ProxyConfig = field(default_factory=ProxyConfig)


@dataclass
class NotifierSettings:
    job: JobConfig = field(default_factory=JobConfig)
    defaults: GlobalConfig = field(default_factory=GlobalConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)

    def effective(self, name: str):
        """Per-job value when set (non-blank for strings), else the global default."""
        if name not in OVERRIDABLE:
            raise KeyError(f"Unknown setting: {name}")
        value = getattr(self.job, name)
        if isinstance(value, str):
            if value.strip():
                return value
        elif value is not None:
            return value
        return getattr(self.defaults, name)

    def resolve(self) -> EffectiveConfig:
        values = {name: self.effective(name) for name in OVERRIDABLE}
        return EffectiveConfig(root_url=self.defaults.root_url, proxy=self.proxy, **values)


@dataclass
class Config:
    defaults: GlobalConfig = field(default_factory=GlobalConfig)
    jobs: dict[str, JobConfig] = field(default_factory=dict)
    credentials: dict[str, dict] = field(default_factory=dict)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    project_root: str = ""

    def settings_for(self, job_name: str) -> NotifierSettings:
        job = self.jobs.get(job_name) or JobConfig()
        return NotifierSettings(job=job, defaults=self.defaults, proxy=self.proxy)

    def credentials_for(self, job_name: str) -> ChainedCredentialStore:
        job = self.jobs.get(job_name) or JobConfig()
        return ChainedCredentialStore(
            CredentialStore(job.credentials),
            CredentialStore(self.credentials),
        )


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------

def deep_merge(base: dict, override: dict) -> dict:
    """Field-level deep merge. Lists are replaced, None values ignored."""
    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ---------------------------------------------------------------------------
# Dict → Config mapping
# ---------------------------------------------------------------------------

def _pick(cls, data: dict, section: str) -> dict:
    """Keep only keys that are fields of the dataclass, checked against the field type.

    Unknown keys are ignored. Scalars for string fields are stringified
    (``project_key: 2024``); booleans must be real YAML booleans.
    """
    picked = {}
    for f in fields(cls):
        value = data.get(f.name)
        if value is None:
            continue
        where = f"{section}.{f.name}" if section else f.name
        if f.type == "str":
            if isinstance(value, (dict, list)):
                raise ConfigError(f"{where} must be a string, got {type(value).__name__}")
            value = str(value)
        elif f.type.startswith("bool"):
            if not isinstance(value, bool):
                raise ConfigError(f"{where} must be true or false, got {value!r}")
        elif f.type.startswith("dict") and not isinstance(value, dict):
            raise ConfigError(f"{where} must be a mapping, got {type(value).__name__}")
        picked[f.name] = value
    return picked


def _build_proxy(data) -> ProxyConfig:
    if isinstance(data, str):
        return ProxyConfig(url=data)
    if not isinstance(data, dict):
        return ProxyConfig()
    values = _pick(ProxyConfig, data, "proxy")
    no_proxy = values.get("no_proxy", ())
    if isinstance(no_proxy, str):
        no_proxy = no_proxy.split(",")
    elif not isinstance(no_proxy, (list, tuple)):
        raise ConfigError(f"proxy.no_proxy must be a list or a comma-separated string, got {no_proxy!r}")
    values["no_proxy"] = [str(h).strip() for h in no_proxy if str(h).strip()]
    return ProxyConfig(**values)


def _dict_to_config(data: dict, project_root: str) -> Config:
    cfg = Config(project_root=project_root)
    cfg.defaults = GlobalConfig(**_pick(GlobalConfig, data, ""))

    if isinstance(data.get("credentials"), dict):
        cfg.credentials = dict(data["credentials"])

    if "proxy" in data:
        cfg.proxy = _build_proxy(data["proxy"])

    if isinstance(data.get("jobs"), dict):
        for name, job_data in data["jobs"].items():
            if not isinstance(job_data, dict):
                continue
            cfg.jobs[str(name)] = JobConfig(**_pick(JobConfig, job_data, f"jobs.{name}"))

    return cfg


# ---------------------------------------------------------------------------
# Load config (3-layer)
# ---------------------------------------------------------------------------

def _read_yaml(path: Path, strict: bool) -> dict:
    if not path.exists():
        return {}
    try:
        parsed = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid {path.name}: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        if strict:
            raise ConfigError(f"Invalid {path.name}: expected mapping, got {type(parsed).__name__}")
        return {}
    return parsed


def load_config(project_root: str | Path) -> Config:
    """Load and merge config from up to 3 layers.

    Priority (highest first):
      1. Environment variables
      2. .dtnotify/local.config.yaml
      3. .dtnotify/config.yaml
    """
    project_root = Path(project_root)
    config_dir = project_root / ".dtnotify"

    base_data = _read_yaml(config_dir / "config.yaml", strict=True)
    local_data = _read_yaml(config_dir / "local.config.yaml", strict=False)

    merged = deep_merge(base_data, local_data)
    cfg = _dict_to_config(merged, str(project_root))

    # Layer 3: env vars
    env_server = os.environ.get("DTNOTIFY_SERVER_URL")
    if env_server:
        cfg.defaults.server_url = env_server

    env_credentials_id = os.environ.get("DTNOTIFY_CREDENTIALS_ID")
    if env_credentials_id:
        cfg.defaults.credentials_id = env_credentials_id

    env_token = os.environ.get("DTNOTIFY_API_TOKEN")
    if env_token:
        if not cfg.defaults.credentials_id:
            cfg.defaults.credentials_id = "dtnotify-api-token"
        cfg.credentials[cfg.defaults.credentials_id] = {"secret": env_token}

    # Root URL of the CI system, as exported by Jenkins
    env_root = os.environ.get("JENKINS_URL")
    if env_root and not cfg.defaults.root_url:
        cfg.defaults.root_url = env_root

    return cfg


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_settings(settings: NotifierSettings) -> list[str]:
    """Return human-readable problems with the settings; empty when usable."""
    errors: list[str] = []

    url = (settings.effective("server_url") or "").strip()
    if not url:
        errors.append("Please specify a valid server URL for the job or in the global configuration")
    elif "$" not in url:  # templates are only checked once expanded
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            errors.append(f"Invalid server URL: {url!r}")

    if not (settings.effective("credentials_id") or "").strip():
        errors.append("Please specify the credentials to use")

    if not (settings.effective("entity_id") or "").strip():
        errors.append("Please specify the entity id events are attached to")

    return errors
