"""Tests for configuration resolution, precedence, and validation."""

from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from trivygate.core.config import (
    ConfigError,
    ConfigResolver,
    Configuration,
    EnvOverrides,
    IgnoreRule,
    deep_merge,
    load_config,
)
from trivygate.core.severity import Severity


def resolve(project_dir, home_dir, environ=None):
    return ConfigResolver(project_dir, environ=environ or {}, home=home_dir).resolve()


# Defaults


def test_defaults_outside_ci(project_dir, home_dir):
    """Test built-in defaults with no files and no environment."""
    config = resolve(project_dir, home_dir)

    assert config.enabled is True
    assert config.skip_scan is False
    assert config.fail_on.critical is False
    assert config.fail_on.high is False
    assert config.fail_on.any is False
    assert config.output.format == "terminal"
    assert config.json_output is False
    assert config.compact_output is False
    assert config.timeout_seconds == 120
    assert config.severity_filter == ()
    assert config.severity_threshold == Severity.CRITICAL
    assert config.ignores == ()
    assert config.ci is False


@pytest.mark.parametrize(
    "environ",
    [
        {"CI": "true"},
        {"TRAVIS": "true"},
        {"GITLAB_CI": "true"},
        {"GITHUB_ACTIONS": "true"},
        {"JENKINS_URL": "http://jenkins.local/"},
    ],
)
def test_ci_detection_enables_strict_defaults(project_dir, home_dir, environ):
    """Test that CI platforms flip fail_on.critical and compact output on."""
    config = resolve(project_dir, home_dir, environ)

    assert config.ci is True
    assert config.fail_on.critical is True
    assert config.compact_output is True


def test_ci_flag_must_be_exactly_true(project_dir, home_dir):
    config = resolve(project_dir, home_dir, {"CI": "1", "GITHUB_ACTIONS": "yes"})

    assert config.ci is False
    assert config.fail_on.critical is False


def test_file_overrides_ci_default(project_dir, home_dir, write_config):
    write_config(project_dir, {"fail_on": {"critical": False}, "output": {"compact": False}})

    config = resolve(project_dir, home_dir, {"CI": "true"})

    assert config.fail_on.critical is False
    assert config.compact_output is False


# File loading and precedence


def test_project_file_values(project_dir, home_dir, write_config):
    write_config(project_dir, {
        "enabled": True,
        "fail_on": {"critical": True, "high": True},
        "output": {"format": "json", "compact": True},
        "scanning": {"timeout": 300, "severity_filter": ["CRITICAL", "HIGH"]},
        "ignores": [{"id": "CVE-2023-1", "reason": "Not reachable"}],
    })

    config = resolve(project_dir, home_dir)

    assert config.fail_on.critical is True
    assert config.fail_on.high is True
    assert config.json_output is True
    assert config.compact_output is True
    assert config.timeout_seconds == 300
    assert config.severity_filter == (Severity.CRITICAL, Severity.HIGH)
    assert config.ignores == (IgnoreRule(cve_id="CVE-2023-1", reason="Not reachable"),)


def test_global_file_is_base_and_project_overrides(project_dir, home_dir, write_config):
    """Test deep merge: nested keys merge, project wins on conflicts."""
    write_config(home_dir, {
        "fail_on": {"critical": True, "high": True},
        "scanning": {"timeout": 200, "severity_filter": ["LOW"]},
    })
    write_config(project_dir, {
        "fail_on": {"high": False},
        "scanning": {"severity_filter": ["CRITICAL"]},
    })

    config = resolve(project_dir, home_dir)

    assert config.fail_on.critical is True
    assert config.fail_on.high is False
    assert config.timeout_seconds == 200
    # Lists are replaced, not concatenated
    assert config.severity_filter == (Severity.CRITICAL,)


def test_global_file_applies_without_project_file(project_dir, home_dir, write_config):
    write_config(home_dir, {"scanning": {"timeout": 60}})

    assert resolve(project_dir, home_dir).timeout_seconds == 60


def test_environment_variant_preferred(project_dir, home_dir, write_config):
    write_config(project_dir, {"scanning": {"timeout": 100}})
    write_config(project_dir, {"scanning": {"timeout": 400}}, name=".trivy-gate.staging.yml")

    config = resolve(project_dir, home_dir, {"TRIVY_GATE_ENV": "staging"})

    assert config.timeout_seconds == 400


def test_environment_variant_falls_back_to_base(project_dir, home_dir, write_config):
    write_config(project_dir, {"scanning": {"timeout": 100}})

    resolver = ConfigResolver(project_dir, environ={"TRIVY_GATE_ENV": "production"}, home=home_dir)

    assert resolver.project_config_path == project_dir / ".trivy-gate.yml"
    assert resolver.resolve().timeout_seconds == 100


def test_corrupt_file_is_treated_as_empty(project_dir, home_dir, write_config):
    """Test that YAML syntax errors are a warning, not a ConfigError."""
    write_config(project_dir, "enabled: [unterminated\n  - :")

    config = resolve(project_dir, home_dir)

    assert config == Configuration()


def test_non_mapping_file_is_treated_as_empty(project_dir, home_dir, write_config):
    write_config(project_dir, "- just\n- a list\n")

    assert resolve(project_dir, home_dir).timeout_seconds == 120


def test_empty_file_uses_defaults(project_dir, home_dir, write_config):
    write_config(project_dir, "")

    assert resolve(project_dir, home_dir) == Configuration()


def test_deep_merge_does_not_mutate_inputs():
    base = {"fail_on": {"critical": True}, "ignores": [1]}
    override = {"fail_on": {"high": True}, "ignores": [2]}

    merged = deep_merge(base, override)

    assert merged == {"fail_on": {"critical": True, "high": True}, "ignores": [2]}
    assert base == {"fail_on": {"critical": True}, "ignores": [1]}


# Environment overrides


@pytest.mark.parametrize("value,skipped", [("true", True), ("1", True), ("TRUE", False), ("yes", False), ("0", False)])
def test_skip_env_boolean_parsing(project_dir, home_dir, value, skipped):
    config = resolve(project_dir, home_dir, {"TRIVY_GATE_SKIP": value})

    assert config.skip_scan is skipped


def test_skip_env_overrides_enabled_file_value(project_dir, home_dir, write_config):
    write_config(project_dir, {"enabled": True})

    config = resolve(project_dir, home_dir, {"TRIVY_GATE_SKIP": "true"})

    assert config.skip_scan is True


def test_skip_env_false_overrides_disabled_file(project_dir, home_dir, write_config):
    write_config(project_dir, {"enabled": False})

    assert resolve(project_dir, home_dir).skip_scan is True
    assert resolve(project_dir, home_dir, {"TRIVY_GATE_SKIP": "false"}).skip_scan is False


def test_env_overrides_every_file_field(project_dir, home_dir, write_config):
    write_config(project_dir, {
        "fail_on": {"critical": True, "high": False, "any": False},
        "output": {"format": "terminal", "compact": True},
        "scanning": {"timeout": 300},
    })

    config = resolve(project_dir, home_dir, {
        "TRIVY_GATE_FAIL_ON_CRITICAL": "false",
        "TRIVY_GATE_FAIL_ON_HIGH": "1",
        "TRIVY_GATE_FAIL_ON_ANY": "true",
        "TRIVY_GATE_COMPACT": "0",
        "TRIVY_GATE_FORMAT": "json",
        "TRIVY_GATE_TIMEOUT": "45",
        "TRIVY_GATE_SEVERITY": "high",
    })

    assert config.fail_on.critical is False
    assert config.fail_on.high is True
    assert config.fail_on.any is True
    assert config.compact_output is False
    assert config.json_output is True
    assert config.timeout_seconds == 45
    assert config.severity_threshold == Severity.HIGH


def test_format_env_is_case_sensitive(project_dir, home_dir):
    config = resolve(project_dir, home_dir, {"TRIVY_GATE_FORMAT": "JSON"})

    assert config.json_output is False


def test_env_snapshot_taken_once(project_dir, home_dir):
    """Test that later environment changes do not leak into a resolver."""
    environ = {"TRIVY_GATE_FAIL_ON_ANY": "true"}
    resolver = ConfigResolver(project_dir, environ=environ, home=home_dir)
    environ["TRIVY_GATE_FAIL_ON_ANY"] = "false"

    assert resolver.resolve().fail_on.any is True


def test_env_overrides_from_environ():
    overrides = EnvOverrides.from_environ({"DEBUG": "1", "TRIVY_GATE_ENV": ""})

    assert overrides.debug is True
    assert overrides.config_variant is None
    assert overrides.skip is None


# Validation


@pytest.mark.parametrize(
    "severity_filter",
    [[], ["CRITICAL"], ["HIGH", "LOW"], ["CRITICAL", "HIGH", "MEDIUM", "LOW", "UNKNOWN"]],
)
def test_valid_severity_filters_accepted(project_dir, home_dir, write_config, severity_filter):
    write_config(project_dir, {"scanning": {"severity_filter": severity_filter}})

    config = resolve(project_dir, home_dir)

    assert [s.value for s in config.severity_filter] == severity_filter


def test_invalid_severity_filter_names_every_token(project_dir, home_dir, write_config):
    write_config(project_dir, {"scanning": {"severity_filter": ["CRITICAL", "SEVERE", "high", "BOGUS"]}})

    with pytest.raises(ConfigError) as exc_info:
        resolve(project_dir, home_dir)

    message = str(exc_info.value)
    assert "Invalid severity levels: SEVERE, high, BOGUS" in message
    assert "CRITICAL," not in message


@pytest.mark.parametrize("timeout", [-1, 0, 5, 9])
def test_timeout_below_minimum_rejected(project_dir, home_dir, write_config, timeout):
    write_config(project_dir, {"scanning": {"timeout": timeout}})

    with pytest.raises(ConfigError, match="Timeout must be at least 10 seconds"):
        resolve(project_dir, home_dir)


@pytest.mark.parametrize("timeout", [10, 11, 120, 3600])
def test_timeout_at_or_above_minimum_accepted(project_dir, home_dir, write_config, timeout):
    write_config(project_dir, {"scanning": {"timeout": timeout}})

    assert resolve(project_dir, home_dir).timeout_seconds == timeout


def test_env_timeout_below_minimum_rejected(project_dir, home_dir):
    with pytest.raises(ConfigError, match="at least 10 seconds"):
        resolve(project_dir, home_dir, {"TRIVY_GATE_TIMEOUT": "5"})


def test_env_timeout_must_be_integer(project_dir, home_dir):
    with pytest.raises(ConfigError, match="Timeout must be an integer"):
        resolve(project_dir, home_dir, {"TRIVY_GATE_TIMEOUT": "fast"})


def test_invalid_severity_threshold_rejected(project_dir, home_dir):
    with pytest.raises(ConfigError, match="Invalid severity threshold: extreme"):
        resolve(project_dir, home_dir, {"TRIVY_GATE_SEVERITY": "extreme"})


def test_ignore_requires_reason(project_dir, home_dir, write_config):
    write_config(project_dir, {"ignores": [{"id": "CVE-2023-12345"}]})

    with pytest.raises(ConfigError, match="Ignore entry for CVE-2023-12345 missing required 'reason' field"):
        resolve(project_dir, home_dir)


def test_ignore_rejects_blank_reason(project_dir, home_dir, write_config):
    write_config(project_dir, {"ignores": [{"id": "CVE-2023-12345", "reason": "  "}]})

    with pytest.raises(ConfigError, match="missing required 'reason' field"):
        resolve(project_dir, home_dir)


def test_ignore_rejects_invalid_expiration(project_dir, home_dir, write_config):
    write_config(project_dir, {"ignores": [{"id": "CVE-2023-12345", "reason": "x", "expires": "not-a-date"}]})

    with pytest.raises(ConfigError, match="Invalid expiration date for CVE-2023-12345: not-a-date"):
        resolve(project_dir, home_dir)


def test_ignore_accepts_yaml_date_and_string(project_dir, home_dir, write_config):
    write_config(
        project_dir,
        "ignores:\n"
        "  - id: CVE-1\n"
        "    reason: native date\n"
        "    expires: 2030-01-31\n"
        "  - id: CVE-2\n"
        "    reason: quoted date\n"
        "    expires: '2030-02-28'\n",
    )

    config = resolve(project_dir, home_dir)

    assert [rule.expires for rule in config.ignores] == [date(2030, 1, 31), date(2030, 2, 28)]


@pytest.mark.parametrize(
    "expires",
    ["2030/12/31", "2030.12.31", "Dec 31 2030", "December 31, 2030", "31 Dec 2030", "Tue Dec 31 2030"],
)
def test_ignore_accepts_common_date_forms(project_dir, home_dir, write_config, expires):
    write_config(project_dir, {"ignores": [{"id": "CVE-1", "reason": "x", "expires": expires}]})

    config = resolve(project_dir, home_dir)

    assert config.ignores[0].expires == date(2030, 12, 31)


def test_all_validation_errors_reported_together(project_dir, home_dir, write_config):
    write_config(project_dir, {
        "fail_on": {"critical": "yes"},
        "output": {"format": "xml"},
        "scanning": {"timeout": 3, "severity_filter": ["NOPE"]},
        "ignores": [
            {"id": "CVE-A"},
            {"id": "CVE-B", "reason": "ok", "expires": "31/12/2030"},
            {"reason": "no id"},
        ],
    })

    with pytest.raises(ConfigError) as exc_info:
        resolve(project_dir, home_dir)

    errors = exc_info.value.errors
    assert len(errors) == 7
    message = str(exc_info.value)
    assert message.startswith("Configuration errors:\n  ")
    assert "fail_on.critical must be a boolean" in message
    assert "output.format must be one of: terminal, json" in message
    assert "Invalid severity levels: NOPE" in message
    assert "Timeout must be at least 10 seconds" in message
    assert "Ignore entry for CVE-A missing required 'reason' field" in message
    assert "Invalid expiration date for CVE-B: 31/12/2030" in message
    assert "Ignore entry missing required 'id' field" in message


def test_load_config_shortcut(project_dir, home_dir, write_config):
    write_config(project_dir, {"fail_on": {"high": True}})

    config = load_config(project_dir, environ={}, home=home_dir)

    assert config.fail_on.high is True


# Configuration immutability and ignore rules


def test_configuration_is_frozen():
    config = Configuration()

    with pytest.raises(ValidationError):
        config.enabled = False


def test_ignore_rule_without_expiry_never_expires():
    rule = IgnoreRule(cve_id="CVE-2023-12345", reason="False positive")

    assert rule.matches("CVE-2023-12345", today=date(2999, 1, 1))


def test_ignore_rule_past_expiry_is_inert():
    rule = IgnoreRule(cve_id="CVE-2023-12345", reason="Temporary", expires=date(2020, 1, 1))

    assert rule.is_expired(today=date(2020, 1, 2))
    assert not rule.matches("CVE-2023-12345", today=date(2020, 1, 2))


def test_ignore_rule_active_through_expiry_day():
    rule = IgnoreRule(cve_id="CVE-2023-12345", reason="Temporary", expires=date(2020, 1, 1))

    assert rule.matches("CVE-2023-12345", today=date(2020, 1, 1))


def test_ignore_rule_matches_exact_id_only():
    rule = IgnoreRule(cve_id="CVE-2023-1234", reason="x")

    assert not rule.matches("CVE-2023-12345")
    assert not rule.matches("cve-2023-1234")


def test_expired_rule_kept_in_config(project_dir, home_dir, write_config):
    yesterday = date.today() - timedelta(days=1)
    tomorrow = date.today() + timedelta(days=1)
    write_config(project_dir, {"ignores": [
        {"id": "CVE-OLD", "reason": "expired", "expires": yesterday.isoformat()},
        {"id": "CVE-NEW", "reason": "active", "expires": tomorrow.isoformat()},
    ]})

    config = resolve(project_dir, home_dir)

    assert len(config.ignores) == 2
    assert [rule.cve_id for rule in config.active_ignores()] == ["CVE-NEW"]
    assert config.is_cve_ignored("CVE-OLD") is False
    assert config.is_cve_ignored("CVE-NEW") is True
