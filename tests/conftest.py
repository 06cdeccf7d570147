"""Shared fixtures: sample trivy findings, reports, and config files."""

import json

import pytest
import yaml


def make_vulnerability(severity="CRITICAL", pkg_name="rack", cve_id="CVE-2023-12345", fixed="2.2.8, 2.3.0"):
    """Trivy finding object as it appears in a Results[].Vulnerabilities list."""
    return {
        "VulnerabilityID": cve_id,
        "PkgName": pkg_name,
        "InstalledVersion": "2.2.3",
        "FixedVersion": fixed,
        "Severity": severity,
        "Title": f"{pkg_name} vulnerability",
        "Description": "Sample vulnerability description",
        "PrimaryURL": f"https://avd.aquasec.com/nvd/{cve_id.lower()}",
    }


def make_report(*vulnerabilities, target="poetry.lock"):
    """Trivy JSON report with a single result target."""
    return {
        "SchemaVersion": 2,
        "Results": [
            {
                "Target": target,
                "Class": "lang-pkgs",
                "Type": "poetry",
                "Vulnerabilities": list(vulnerabilities),
            }
        ],
    }


@pytest.fixture
def vulnerability_factory():
    return make_vulnerability


@pytest.fixture
def report_factory():
    return make_report


@pytest.fixture
def report_json(report_factory, vulnerability_factory):
    """Serialized report with one CRITICAL finding."""
    return json.dumps(report_factory(vulnerability_factory()))


@pytest.fixture
def project_dir(tmp_path):
    """Project root containing a lockfile."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "poetry.lock").write_text("# lockfile\n")
    return project


@pytest.fixture
def home_dir(tmp_path):
    """Empty home directory so the real ~/.trivy-gate.yml is never read."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def write_config():
    """Write a YAML config file and return its path."""

    def _write(directory, content, name=".trivy-gate.yml"):
        path = directory / name
        path.write_text(yaml.safe_dump(content) if isinstance(content, dict) else content)
        return path

    return _write
