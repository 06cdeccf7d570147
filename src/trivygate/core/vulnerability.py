"""Vulnerability value type built from trivy's JSON report.

Each finding in a trivy `Results[].Vulnerabilities[]` list becomes one
immutable Vulnerability tagged with the artifact (lockfile) it came from.
"""

from typing import Any

from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict

from trivygate.core.severity import Severity, cvss_base_score, severity_sort_key

# Preferred CVSS sources when trivy reports several
CVSS_SOURCES = ("nvd", "ghsa", "redhat")


def _split_versions(value: Any) -> tuple[str, ...]:
    """Split trivy's comma-separated FixedVersion field ("2.2.8, 2.3.0")."""
    if not value:
        return ()
    if isinstance(value, list):
        parts = [str(v) for v in value]
    else:
        parts = str(value).split(",")
    return tuple(part.strip() for part in parts if part and part.strip())


def _pick_cvss(cvss: Any) -> tuple[str | None, float | None]:
    if not isinstance(cvss, dict) or not cvss:
        return None, None

    ordered = [cvss[name] for name in CVSS_SOURCES if name in cvss]
    ordered += [entry for name, entry in cvss.items() if name not in CVSS_SOURCES]
    for entry in ordered:
        if not isinstance(entry, dict):
            continue
        vector = entry.get("V3Vector")
        if not isinstance(vector, str) or not vector:
            vector = None
        score = entry.get("V3Score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = None
        if vector or score is not None:
            return vector, float(score) if score is not None else None
    return None, None


def _parse_version(value: str) -> Version | None:
    try:
        return Version(value)
    except InvalidVersion:
        return None


class Vulnerability(BaseModel):
    """A single reported vulnerability.

    Attributes:
        id: Advisory identifier (usually a CVE, sometimes GHSA/OSV)
        package_name: Affected package
        installed_version: Version found in the lockfile
        fixed_versions: Versions that fix the issue (may be empty)
        severity: Reported severity (UNKNOWN when unrecognized)
        severity_token: Severity exactly as trivy reported it
        title: Short advisory title
        description: Advisory description
        primary_url: Main advisory link, when reported
        target: Artifact the finding came from (e.g. "poetry.lock")
        references: Further advisory links
        cvss_vector: CVSS v3 vector, when reported
        reported_score: CVSS v3 score as reported by trivy, when present
    """

    model_config = ConfigDict(frozen=True)

    id: str
    package_name: str
    installed_version: str = ""
    fixed_versions: tuple[str, ...] = ()
    severity: Severity = Severity.UNKNOWN
    severity_token: str = ""
    title: str = ""
    description: str = ""
    primary_url: str | None = None
    target: str = ""
    references: tuple[str, ...] = ()
    cvss_vector: str | None = None
    reported_score: float | None = None

    @classmethod
    def from_trivy(cls, entry: dict[str, Any], target: str | None = None) -> "Vulnerability":
        """Build from one trivy finding object.

        Args:
            entry: Element of a result's "Vulnerabilities" list
            target: The enclosing result's "Target"

        Example:
            >>> vuln = Vulnerability.from_trivy(
            ...     {"VulnerabilityID": "CVE-2023-12345", "PkgName": "rack",
            ...      "InstalledVersion": "2.2.3", "FixedVersion": "2.2.8, 2.3.0",
            ...      "Severity": "CRITICAL"},
            ...     "Gemfile.lock",
            ... )
            >>> vuln.fixed_versions
            ('2.2.8', '2.3.0')
        """
        vector, score = _pick_cvss(entry.get("CVSS"))
        references = entry.get("References") or ()
        return cls(
            id=str(entry.get("VulnerabilityID") or ""),
            package_name=str(entry.get("PkgName") or ""),
            installed_version=str(entry.get("InstalledVersion") or ""),
            fixed_versions=_split_versions(entry.get("FixedVersion")),
            severity=Severity.parse(entry.get("Severity")),
            severity_token=str(entry.get("Severity") or ""),
            title=str(entry.get("Title") or ""),
            description=str(entry.get("Description") or ""),
            primary_url=entry.get("PrimaryURL") or None,
            target=str(target or ""),
            references=tuple(str(ref) for ref in references if ref),
            cvss_vector=vector,
            reported_score=score,
        )

    @property
    def fixable(self) -> bool:
        return bool(self.fixed_versions)

    @property
    def fixed_version(self) -> str | None:
        """Fixed versions as trivy displays them, or None when there is no fix."""
        return ", ".join(self.fixed_versions) if self.fixed_versions else None

    @property
    def applicable_fixed_version(self) -> str | None:
        """Lowest fixed version newer than the installed one.

        Trivy lists fixes for several release lines ("2.2.8, 3.0.1"); the
        smallest upgrade that still fixes the issue is the one to suggest.
        Returns None when versions cannot be compared.
        """
        installed = _parse_version(self.installed_version)
        if installed is None:
            return None

        candidates = []
        for raw in self.fixed_versions:
            parsed = _parse_version(raw)
            if parsed is not None and parsed > installed:
                candidates.append((parsed, raw))

        if not candidates:
            return None
        return min(candidates)[1]

    @property
    def cvss_score(self) -> float | None:
        """CVSS base score computed from the vector, else the reported score."""
        computed = cvss_base_score(self.cvss_vector)
        return computed if computed is not None else self.reported_score

    @property
    def sort_key(self) -> tuple[int, str, str]:
        # Unrecognized tokens land in the UNKNOWN group but sort after it
        return (severity_sort_key(self.severity_token or self.severity), self.package_name, self.id)

    def is_critical(self) -> bool:
        return self.severity is Severity.CRITICAL

    def is_high(self) -> bool:
        return self.severity is Severity.HIGH
