"""Filtered view over a trivy JSON report.

ScanResult wraps the raw report, materializes Vulnerability objects, drops
findings covered by an active ignore rule, and offers the grouping and
aggregate views consumed by the policy decision and the reporter.

The filtered list is computed on first access and cached, so repeated reads
on one ScanResult always return the same tuple.
"""

from datetime import date
from functools import cached_property
from typing import Any

import structlog
from packaging.version import InvalidVersion, Version

from trivygate.core.config import Configuration
from trivygate.core.severity import Severity
from trivygate.core.vulnerability import Vulnerability

logger = structlog.get_logger()


class ScanResult:
    """Results of one trivy scan with ignore rules applied.

    Example:
        >>> result = ScanResult({"Results": []}, config)
        >>> result.has_vulnerabilities
        False
    """

    def __init__(
        self,
        data: dict[str, Any] | None,
        config: Configuration | None = None,
        today: date | None = None,
    ):
        """Wrap a parsed trivy report.

        Args:
            data: Parsed trivy JSON (None is treated as an empty report)
            config: Configuration supplying ignore rules (None = ignore nothing)
            today: Reference date for ignore-rule expiry (default: date of first read)
        """
        self.data = data or {}
        self.config = config
        self._today = today

    @cached_property
    def all_vulnerabilities(self) -> tuple[Vulnerability, ...]:
        """Every finding in the report, before ignore rules."""
        results = self.data.get("Results") or []
        vulnerabilities = []
        for result in results:
            if not isinstance(result, dict):
                continue
            for entry in result.get("Vulnerabilities") or []:
                if isinstance(entry, dict):
                    vulnerabilities.append(Vulnerability.from_trivy(entry, result.get("Target")))
        return tuple(vulnerabilities)

    @cached_property
    def vulnerabilities(self) -> tuple[Vulnerability, ...]:
        """Findings not covered by an active ignore rule, in report order."""
        if self.config is None or not self.config.ignores:
            return self.all_vulnerabilities

        today = self._today or date.today()
        kept = tuple(v for v in self.all_vulnerabilities if not self.config.is_cve_ignored(v.id, today))
        if len(kept) != len(self.all_vulnerabilities):
            logger.debug(
                "vulnerabilities_ignored",
                ignored=len(self.all_vulnerabilities) - len(kept),
                remaining=len(kept),
            )
        return kept

    @property
    def ignored_count(self) -> int:
        return len(self.all_vulnerabilities) - len(self.vulnerabilities)

    @property
    def by_severity(self) -> dict[Severity, tuple[Vulnerability, ...]]:
        """Non-empty severity groups, keyed in fixed severity order."""
        groups: dict[Severity, list[Vulnerability]] = {}
        for vuln in self.vulnerabilities:
            groups.setdefault(vuln.severity, []).append(vuln)
        return {severity: tuple(groups[severity]) for severity in Severity if severity in groups}

    @property
    def severity_counts(self) -> dict[Severity, int]:
        return {severity: len(vulns) for severity, vulns in self.by_severity.items()}

    @property
    def critical_vulnerabilities(self) -> tuple[Vulnerability, ...]:
        return tuple(v for v in self.vulnerabilities if v.is_critical())

    @property
    def high_vulnerabilities(self) -> tuple[Vulnerability, ...]:
        return tuple(v for v in self.vulnerabilities if v.is_high())

    @property
    def fixable_vulnerabilities(self) -> tuple[Vulnerability, ...]:
        return tuple(v for v in self.vulnerabilities if v.fixable)

    @property
    def has_vulnerabilities(self) -> bool:
        return bool(self.vulnerabilities)

    @property
    def has_critical_vulnerabilities(self) -> bool:
        return bool(self.critical_vulnerabilities)

    @property
    def vulnerability_count(self) -> int:
        return len(self.vulnerabilities)

    def recommended_upgrades(self) -> dict[str, str | None]:
        """Suggested target version per package with at least one fix.

        Picks the highest fixed version across the package's findings so one
        upgrade covers them all. Maps to None when no version parses.
        """
        versions: dict[str, list[str]] = {}
        for vuln in self.fixable_vulnerabilities:
            bucket = versions.setdefault(vuln.package_name, [])
            bucket.extend(v for v in vuln.fixed_versions if v not in bucket)

        upgrades: dict[str, str | None] = {}
        for package, candidates in versions.items():
            parsed = []
            for raw in candidates:
                try:
                    parsed.append((Version(raw), raw))
                except InvalidVersion:
                    continue
            upgrades[package] = max(parsed)[1] if parsed else None
        return upgrades
