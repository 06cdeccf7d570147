"""Terminal and JSON rendering of scan results.

Reporter turns a ScanResult into either a human-readable report (with
severity colors, compact mode for CI logs, and upgrade advice) or a
machine-readable JSON document.

Terminal color respects NO_COLOR and is disabled when stdout is not a TTY.
"""

import json
import os
import sys

import asyncclick as click

from trivygate.core.config import Configuration
from trivygate.core.scan_result import ScanResult
from trivygate.core.severity import Severity
from trivygate.core.vulnerability import Vulnerability

SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
    Severity.UNKNOWN: None,
}

# Sections still shown in compact mode
COMPACT_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


def color_enabled() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return sys.stdout.isatty()


class Reporter:
    """Format a ScanResult for display.

    Args:
        result: Filtered scan results
        config: Configuration controlling format and compactness
        color: Force color on/off (default: auto-detect)

    Example:
        >>> Reporter(result, config, color=False).display()
    """

    def __init__(self, result: ScanResult, config: Configuration | None = None, color: bool | None = None):
        self.result = result
        self.config = config or result.config or Configuration()
        self.color = color_enabled() if color is None else color

    def display(self) -> None:
        click.echo(self.render())

    def render(self) -> str:
        if self.config.json_output:
            return self.render_json()

        if not self.result.has_vulnerabilities:
            return self._style("No vulnerabilities found by Trivy", fg="green")

        lines: list[str] = []
        lines.extend(self._summary_lines())
        lines.extend(self._severity_section_lines())
        lines.extend(self._remediation_lines())
        lines.extend(self._policy_note_lines())
        return "\n".join(lines).rstrip("\n")

    def render_json(self) -> str:
        output = {
            "vulnerabilities": [
                {
                    "id": vuln.id,
                    "package": vuln.package_name,
                    "installed_version": vuln.installed_version,
                    "fixed_version": vuln.fixed_version,
                    "severity": vuln.severity.value,
                    "title": vuln.title,
                    "url": vuln.primary_url,
                    "cvss_score": vuln.cvss_score,
                    "references": list(vuln.references),
                }
                for vuln in self.result.vulnerabilities
            ],
            "summary": {
                "total": self.result.vulnerability_count,
                "by_severity": {
                    severity.value: count for severity, count in self.result.severity_counts.items()
                },
            },
        }
        return json.dumps(output, indent=2)

    def _summary_lines(self) -> list[str]:
        lines = [self._style(f"Trivy found {self.result.vulnerability_count} vulnerabilities", fg="yellow"), ""]
        for severity, count in self.result.severity_counts.items():
            lines.append(f"  {self._severity_label(severity)}: {count}")
        if self.result.ignored_count:
            lines.append(f"  ({self.result.ignored_count} ignored by configuration)")
        lines.append("")
        return lines

    def _severity_section_lines(self) -> list[str]:
        lines: list[str] = []
        for severity, vulns in self.result.by_severity.items():
            if self.config.compact_output and severity not in COMPACT_SEVERITIES:
                continue

            lines.append(f"{self._severity_label(severity)} Vulnerabilities:")
            lines.append("")
            for vuln in sorted(vulns, key=lambda v: v.sort_key):
                lines.extend(self._vulnerability_lines(vuln))
            lines.append("")
        return lines

    def _vulnerability_lines(self, vuln: Vulnerability) -> list[str]:
        lines = [
            f"  {self._style(vuln.package_name, bold=True)} ({vuln.installed_version})",
            f"  {vuln.id}: {vuln.title}",
        ]
        if vuln.fixable:
            fixed = vuln.applicable_fixed_version or vuln.fixed_version
            lines.append(f"  Fixed in: {self._style(fixed, fg='green')}")
        else:
            lines.append(f"  {self._style('No fix available yet', fg='yellow')}")
        score = vuln.cvss_score
        if score is not None:
            lines.append(f"  CVSS: {score:.1f}")
        if vuln.primary_url:
            lines.append(f"  {vuln.primary_url}")
        elif vuln.references:
            lines.append(f"  {vuln.references[0]}")
        lines.append("")
        return lines

    def _remediation_lines(self) -> list[str]:
        upgrades = self.result.recommended_upgrades()
        if not upgrades:
            return []

        lines = [self._style("Recommended Actions:", bold=True), ""]
        for package, version in upgrades.items():
            if version:
                lines.append(f"  Update {package} to {version}")
            else:
                lines.append(f"  Update {package}")
        lines.append("")
        return lines

    def _policy_note_lines(self) -> list[str]:
        # fail_on.high is reported here, never enforced by the blocking decision
        if self.config.fail_on.high and self.result.high_vulnerabilities:
            return [
                f"Note: {len(self.result.high_vulnerabilities)} HIGH vulnerabilities found "
                "(fail_on.high is set; reported but not blocking)"
            ]
        return []

    def _severity_label(self, severity: Severity) -> str:
        return self._style(severity.value, fg=SEVERITY_COLORS.get(severity))

    def _style(self, text: str, **styles) -> str:
        if not self.color:
            return text
        return click.style(text, **styles)
