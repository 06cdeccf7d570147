"""Configuration management for trivy-gate.

Resolves settings from four sources with strict precedence:
1. Environment variables (TRIVY_GATE_*)
2. Project config file (.trivy-gate.yml, or .trivy-gate.<env>.yml)
3. Global config file (~/.trivy-gate.yml)
4. Built-in defaults, some of which depend on CI detection

The two files are deep-merged, then mapped field by field onto frozen
Pydantic models. Validation problems are collected and raised together as a
single ConfigError. A file that cannot be read or parsed is logged and
treated as empty.

Provides:
- Configuration: Resolved, immutable settings aggregate
- IgnoreRule: CVE suppression entry with optional expiry
- EnvOverrides: Snapshot of the environment taken once per resolution
- ConfigResolver / load_config: Resolution entry points
- ConfigError: Aggregated validation failure
"""

import os
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field

from trivygate.core.severity import Severity

logger = structlog.get_logger()

PROJECT_CONFIG_NAME = ".trivy-gate.yml"
PROJECT_CONFIG_VARIANT = ".trivy-gate.{env}.yml"
GLOBAL_CONFIG_NAME = ".trivy-gate.yml"

DEFAULT_TIMEOUT_SECONDS = 120
MIN_TIMEOUT_SECONDS = 10
OUTPUT_FORMATS = ("terminal", "json")

ENV_SKIP = "TRIVY_GATE_SKIP"
ENV_FAIL_ON_CRITICAL = "TRIVY_GATE_FAIL_ON_CRITICAL"
ENV_FAIL_ON_HIGH = "TRIVY_GATE_FAIL_ON_HIGH"
ENV_FAIL_ON_ANY = "TRIVY_GATE_FAIL_ON_ANY"
ENV_COMPACT = "TRIVY_GATE_COMPACT"
ENV_FORMAT = "TRIVY_GATE_FORMAT"
ENV_TIMEOUT = "TRIVY_GATE_TIMEOUT"
ENV_SEVERITY = "TRIVY_GATE_SEVERITY"
ENV_CONFIG_VARIANT = "TRIVY_GATE_ENV"
ENV_DEBUG = "DEBUG"

ENV_VARIABLES = (
    ENV_SKIP,
    ENV_FAIL_ON_CRITICAL,
    ENV_FAIL_ON_HIGH,
    ENV_FAIL_ON_ANY,
    ENV_COMPACT,
    ENV_FORMAT,
    ENV_TIMEOUT,
    ENV_SEVERITY,
    ENV_CONFIG_VARIANT,
)

# CI platforms that export "<NAME>=true"
CI_FLAG_VARIABLES = ("CI", "TRAVIS", "GITLAB_CI", "GITHUB_ACTIONS")
# CI platforms detected by the variable merely being present
CI_PRESENCE_VARIABLES = ("JENKINS_URL",)

# Accepted string forms for ignores[].expires (commas are ignored)
EXPIRY_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%Y%m%d",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%a %b %d %Y",
)


class ConfigError(Exception):
    """Configuration failed validation.

    Attributes:
        errors: Every individual problem found, in discovery order
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Configuration errors:\n  " + "\n  ".join(self.errors))


class IgnoreRule(BaseModel):
    """Suppression of a single CVE, optionally time-limited.

    A rule whose expiry date has passed stays in the configuration but never
    matches. The expiry day itself is still covered.
    """

    model_config = ConfigDict(frozen=True)

    cve_id: str
    reason: str
    expires: date | None = None

    def is_expired(self, today: date | None = None) -> bool:
        if self.expires is None:
            return False
        return (today or date.today()) > self.expires

    def matches(self, cve_id: str, today: date | None = None) -> bool:
        """Exact identifier match against an active (non-expired) rule."""
        return self.cve_id == cve_id and not self.is_expired(today)


class FailOnSettings(BaseModel):
    """Which findings should make the caller treat a scan as blocking.

    `high` is resolved and exposed but not consulted by the blocking
    decision; see trivygate.core.policy.
    """

    model_config = ConfigDict(frozen=True)

    critical: bool = False
    high: bool = False
    any: bool = False


class OutputSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: Literal["terminal", "json"] = "terminal"
    compact: bool = False


class ScanningSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    severity_filter: tuple[Severity, ...] = ()


class Configuration(BaseModel):
    """Resolved trivy-gate settings.

    Built once per invocation by ConfigResolver and never mutated afterwards.
    Constructing one directly is supported (tests, embedding) and skips
    validation.

    Attributes:
        enabled: Whether scanning runs at all
        fail_on: Blocking policy switches
        output: Presentation settings
        scanning: Scanner invocation settings
        severity_threshold: Minimum severity of interest (from TRIVY_GATE_SEVERITY)
        ignores: Ignore rules in configured order, expired ones included
        ci: Whether a CI environment was detected
        debug: Whether the DEBUG flag was set
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    fail_on: FailOnSettings = Field(default_factory=FailOnSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)
    scanning: ScanningSettings = Field(default_factory=ScanningSettings)
    severity_threshold: Severity = Severity.CRITICAL
    ignores: tuple[IgnoreRule, ...] = ()
    ci: bool = False
    debug: bool = False

    @property
    def skip_scan(self) -> bool:
        return not self.enabled

    @property
    def json_output(self) -> bool:
        return self.output.format == "json"

    @property
    def compact_output(self) -> bool:
        return self.output.compact

    @property
    def timeout_seconds(self) -> int:
        return self.scanning.timeout_seconds

    @property
    def severity_filter(self) -> tuple[Severity, ...]:
        return self.scanning.severity_filter

    def active_ignores(self, today: date | None = None) -> tuple[IgnoreRule, ...]:
        """Ignore rules that have not expired as of `today`."""
        return tuple(rule for rule in self.ignores if not rule.is_expired(today))

    def is_cve_ignored(self, cve_id: str, today: date | None = None) -> bool:
        return any(rule.matches(cve_id, today) for rule in self.ignores)


def _env_bool(environ: Mapping[str, str], key: str) -> bool | None:
    value = environ.get(key)
    if value is None:
        return None
    return value in ("true", "1")


class EnvOverrides(BaseModel):
    """Environment-variable overrides captured at resolution time.

    Boolean values are true iff the variable is exactly "true" or "1". Unset
    variables stay None so they never shadow file or default values. Timeout
    and severity are kept raw and checked during validation.
    """

    model_config = ConfigDict(frozen=True)

    skip: bool | None = None
    fail_on_critical: bool | None = None
    fail_on_high: bool | None = None
    fail_on_any: bool | None = None
    compact: bool | None = None
    output_format: str | None = None
    timeout: str | None = None
    severity_threshold: str | None = None
    config_variant: str | None = None
    ci: bool = False
    debug: bool = False

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvOverrides":
        ci = any(environ.get(name) == "true" for name in CI_FLAG_VARIABLES) or any(
            environ.get(name) is not None for name in CI_PRESENCE_VARIABLES
        )
        return cls(
            skip=_env_bool(environ, ENV_SKIP),
            fail_on_critical=_env_bool(environ, ENV_FAIL_ON_CRITICAL),
            fail_on_high=_env_bool(environ, ENV_FAIL_ON_HIGH),
            fail_on_any=_env_bool(environ, ENV_FAIL_ON_ANY),
            compact=_env_bool(environ, ENV_COMPACT),
            output_format=environ.get(ENV_FORMAT),
            timeout=environ.get(ENV_TIMEOUT),
            severity_threshold=environ.get(ENV_SEVERITY),
            config_variant=environ.get(ENV_CONFIG_VARIANT) or None,
            ci=ci,
            debug=bool(_env_bool(environ, ENV_DEBUG)),
        )


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge `override` into a copy of `base`.

    Nested mappings merge key-wise; scalars and lists from `override`
    replace the base value.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _lookup(document: dict[str, Any], path: tuple[str, ...]) -> Any:
    value: Any = document
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _parse_expiry(value: Any) -> date:
    """Parse an ignore rule's expiry; raises ValueError when unparsable.

    Accepts YAML dates and the string forms listed in EXPIRY_FORMATS
    ("2025-12-31", "2025/12/31", "Dec 31 2025", "31 December 2025", ...).
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported expiry value {value!r}")

    text = " ".join(value.replace(",", " ").split())
    for fmt in EXPIRY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date {value!r}")


class ConfigResolver:
    """Resolve a Configuration for one project.

    The environment mapping and home directory are injectable so that a
    resolution is a pure function of its inputs.

    Example:
        >>> resolver = ConfigResolver("/path/to/project", environ={"CI": "true"})
        >>> config = resolver.resolve()
        >>> config.fail_on.critical
        True
    """

    def __init__(
        self,
        project_root: str | Path,
        environ: Mapping[str, str] | None = None,
        home: str | Path | None = None,
    ):
        self.project_root = Path(project_root)
        self.env = EnvOverrides.from_environ(os.environ if environ is None else environ)
        self.home = Path(home) if home is not None else Path.home()
        self.log = logger.bind(project_root=str(self.project_root))

    @property
    def project_config_path(self) -> Path:
        """Project config file, preferring the TRIVY_GATE_ENV variant when present."""
        if self.env.config_variant:
            variant = self.project_root / PROJECT_CONFIG_VARIANT.format(env=self.env.config_variant)
            if variant.is_file():
                return variant
        return self.project_root / PROJECT_CONFIG_NAME

    @property
    def global_config_path(self) -> Path:
        return self.home / GLOBAL_CONFIG_NAME

    def load_file_config(self) -> dict[str, Any]:
        """Deep-merge the global file (base) with the project file (override)."""
        global_config = self._load_yaml(self.global_config_path)
        project_config = self._load_yaml(self.project_config_path)
        return deep_merge(global_config, project_config)

    def resolve(self) -> Configuration:
        """Build the Configuration.

        Raises:
            ConfigError: If any file or environment value fails validation
        """
        file_config = self.load_file_config()
        errors: list[str] = []
        config = self._build(file_config, errors)

        if errors:
            self.log.debug("config_invalid", errors=errors)
            raise ConfigError(errors)

        self.log.debug(
            "config_resolved",
            enabled=config.enabled,
            ci=config.ci,
            ignores=len(config.ignores),
        )
        return config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        if not path.is_file():
            return {}

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            self.log.warning("config_load_failed", path=str(path), error=str(e))
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            self.log.warning(
                "config_load_failed",
                path=str(path),
                error=f"expected a mapping at top level, got {type(data).__name__}",
            )
            return {}

        self.log.debug("config_loaded", path=str(path))
        return data

    def _build(self, raw: dict[str, Any], errors: list[str]) -> Configuration:
        env = self.env

        enabled = self._file_bool(raw, ("enabled",), True, errors)
        if env.skip is not None:
            enabled = not env.skip

        fail_on = FailOnSettings(
            critical=self._pick(env.fail_on_critical, self._file_bool(raw, ("fail_on", "critical"), env.ci, errors)),
            high=self._pick(env.fail_on_high, self._file_bool(raw, ("fail_on", "high"), False, errors)),
            any=self._pick(env.fail_on_any, self._file_bool(raw, ("fail_on", "any"), False, errors)),
        )

        output = OutputSettings(
            format=self._output_format(raw, errors),
            compact=self._pick(env.compact, self._file_bool(raw, ("output", "compact"), env.ci, errors)),
        )

        scanning = ScanningSettings(
            timeout_seconds=self._timeout(raw, errors),
            severity_filter=self._severity_filter(raw, errors),
        )

        return Configuration(
            enabled=enabled,
            fail_on=fail_on,
            output=output,
            scanning=scanning,
            severity_threshold=self._severity_threshold(errors),
            ignores=self._ignores(raw, errors),
            ci=env.ci,
            debug=env.debug,
        )

    @staticmethod
    def _pick(override: bool | None, fallback: bool) -> bool:
        return fallback if override is None else override

    @staticmethod
    def _file_bool(raw: dict[str, Any], path: tuple[str, ...], default: bool, errors: list[str]) -> bool:
        value = _lookup(raw, path)
        if value is None:
            return default
        if not isinstance(value, bool):
            errors.append(f"{'.'.join(path)} must be a boolean, got {value!r}")
            return default
        return value

    def _output_format(self, raw: dict[str, Any], errors: list[str]) -> str:
        if self.env.output_format is not None:
            return "json" if self.env.output_format == "json" else "terminal"

        value = _lookup(raw, ("output", "format"))
        if value is None:
            return "terminal"
        if value not in OUTPUT_FORMATS:
            errors.append(f"output.format must be one of: {', '.join(OUTPUT_FORMATS)}, got {value!r}")
            return "terminal"
        return value

    def _timeout(self, raw: dict[str, Any], errors: list[str]) -> int:
        if self.env.timeout is not None:
            try:
                timeout = int(self.env.timeout.strip())
            except ValueError:
                errors.append(f"Timeout must be an integer, got {ENV_TIMEOUT}={self.env.timeout!r}")
                return DEFAULT_TIMEOUT_SECONDS
        else:
            value = _lookup(raw, ("scanning", "timeout"))
            if value is None:
                return DEFAULT_TIMEOUT_SECONDS
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"Timeout must be an integer, got {value!r}")
                return DEFAULT_TIMEOUT_SECONDS
            timeout = value

        if timeout < MIN_TIMEOUT_SECONDS:
            errors.append(f"Timeout must be at least {MIN_TIMEOUT_SECONDS} seconds")
        return timeout

    @staticmethod
    def _severity_filter(raw: dict[str, Any], errors: list[str]) -> tuple[Severity, ...]:
        value = _lookup(raw, ("scanning", "severity_filter"))
        if value is None:
            return ()
        if not isinstance(value, list):
            errors.append(f"scanning.severity_filter must be a list, got {value!r}")
            return ()

        invalid = [str(token) for token in value if not Severity.is_valid(token)]
        if invalid:
            errors.append(f"Invalid severity levels: {', '.join(invalid)}")
            return ()
        return tuple(Severity(token) for token in value)

    def _severity_threshold(self, errors: list[str]) -> Severity:
        value = self.env.severity_threshold
        if value is None:
            return Severity.CRITICAL

        token = value.strip().upper()
        if not Severity.is_valid(token):
            errors.append(f"Invalid severity threshold: {value}")
            return Severity.CRITICAL
        return Severity(token)

    @staticmethod
    def _ignores(raw: dict[str, Any], errors: list[str]) -> tuple[IgnoreRule, ...]:
        value = raw.get("ignores")
        if value is None:
            return ()
        if not isinstance(value, list):
            errors.append(f"ignores must be a list, got {value!r}")
            return ()

        rules = []
        for entry in value:
            if not isinstance(entry, dict):
                errors.append(f"Ignore entries must be mappings, got {entry!r}")
                continue

            cve_id = entry.get("id")
            entry_ok = True
            if not cve_id:
                errors.append("Ignore entry missing required 'id' field")
                entry_ok = False

            expires = None
            if entry.get("expires") is not None:
                try:
                    expires = _parse_expiry(entry["expires"])
                except ValueError:
                    errors.append(f"Invalid expiration date for {cve_id}: {entry['expires']}")
                    entry_ok = False

            reason = entry.get("reason")
            if not isinstance(reason, str) or not reason.strip():
                errors.append(f"Ignore entry for {cve_id} missing required 'reason' field")
                entry_ok = False

            if entry_ok:
                rules.append(IgnoreRule(cve_id=str(cve_id), reason=reason, expires=expires))

        return tuple(rules)


def load_config(
    project_root: str | Path,
    environ: Mapping[str, str] | None = None,
    home: str | Path | None = None,
) -> Configuration:
    """Resolve configuration for a project.

    Args:
        project_root: Directory holding the project's lockfile and .trivy-gate.yml
        environ: Environment mapping (default: os.environ)
        home: Home directory for the global config (default: Path.home())

    Returns:
        Resolved Configuration

    Raises:
        ConfigError: If validation fails
    """
    return ConfigResolver(project_root, environ=environ, home=home).resolve()
