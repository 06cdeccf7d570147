"""Trivy wrapper for lockfile vulnerability scanning.

Runs `trivy fs` against a project root with JSON output, classifies the
outcome by exit code, and wraps the parsed report in a ScanResult. Every
failure is raised as a ScanError whose message includes the raw diagnostic
detail and the remediation steps for that kind of failure.
"""

import asyncio
import json
import time
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from trivygate.core.config import Configuration
from trivygate.core.scan_result import ScanResult
from trivygate.tools.base import check_binary, run_subprocess

logger = structlog.get_logger()

INSTALL_URL = "https://trivy.dev/docs/getting-started/installation/"
DOCS_URL = "https://trivy.dev/docs/"
MIN_TRIVY_VERSION = "v0.40.0"
OUTPUT_PREVIEW_CHARS = 500


class ScanErrorKind(str, Enum):
    """Why a scan failed."""
    TOOL_FAILURE = "tool_failure"
    INVALID_OUTPUT = "invalid_output"
    TIMEOUT = "timeout"
    NOT_INSTALLED = "not_installed"


class ScanError(Exception):
    """A trivy scan could not produce a result.

    Attributes:
        kind: Failure classification
        exit_code: Trivy's exit status (TOOL_FAILURE only)
        stderr: Captured standard error (TOOL_FAILURE only)
        timeout: Configured timeout in seconds (TIMEOUT only)
    """

    def __init__(
        self,
        message: str,
        kind: ScanErrorKind,
        *,
        exit_code: int | None = None,
        stderr: str | None = None,
        timeout: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.exit_code = exit_code
        self.stderr = stderr
        self.timeout = timeout


class TrivyScanner:
    """Wrapper for trivy filesystem scans of dependency lockfiles.

    Runs trivy once per scan() call, bounded by the configured timeout. There
    is no retry: failures are raised to the caller, who decides what to do.

    Example:
        >>> scanner = TrivyScanner("/path/to/project", config)
        >>> if scanner.is_available():
        ...     result = await scanner.scan()
        ...     print(f"Found {result.vulnerability_count} vulnerabilities")
    """

    name = "trivy"
    binary_name = "trivy"

    def __init__(self, project_root: str | Path, config: Configuration | None = None):
        """Initialize trivy scanner.

        Args:
            project_root: Directory to scan (holds the lockfile)
            config: Resolved configuration (default: built-in defaults)
        """
        self.project_root = str(project_root)
        self.config = config or Configuration()
        self.log = logger.bind(tool=self.name, project_root=self.project_root)

    def is_available(self) -> bool:
        """Check if trivy binary is available on PATH."""
        return check_binary(self.binary_name)

    def build_args(self) -> list[str]:
        """Build the trivy command line.

        Runs: trivy fs --scanners vuln --format json --quiet [--severity A,B] <root>
        """
        args = [
            self.binary_name, "fs",
            "--scanners", "vuln",
            "--format", "json",
            "--quiet",
        ]

        severity_filter = self.config.severity_filter
        if severity_filter:
            args.extend(["--severity", ",".join(s.value for s in severity_filter)])

        args.append(self.project_root)
        return args

    async def scan(self) -> ScanResult:
        """Execute a trivy scan of the project.

        Returns:
            ScanResult wrapping the parsed report and this scanner's configuration

        Raises:
            ScanError: If trivy is missing, exits with a status other than 0 or 1, emits
                invalid JSON, or exceeds the configured timeout
        """
        if not self.is_available():
            self.log.warning("binary_not_found", binary=self.binary_name)
            raise ScanError(self.build_not_installed_message(), ScanErrorKind.NOT_INSTALLED)

        args = self.build_args()
        timeout = self.config.timeout_seconds
        start_time = time.time()
        self.log.info("trivy_scan_start", args=args, timeout=timeout)

        try:
            stdout, stderr, returncode = await run_subprocess(args, timeout=timeout)
        except asyncio.TimeoutError:
            self.log.error("trivy_timeout", timeout=timeout)
            raise ScanError(
                self.build_timeout_error_message(timeout),
                ScanErrorKind.TIMEOUT,
                timeout=timeout,
            ) from None

        # 0 = clean, 1 = findings present; anything else (including a
        # negative code for a signal-killed process) means trivy failed
        if returncode not in (0, 1):
            self.log.error("trivy_failed", returncode=returncode, stderr=stderr)
            raise ScanError(
                self.build_error_message(returncode, stderr),
                ScanErrorKind.TOOL_FAILURE,
                exit_code=returncode,
                stderr=stderr,
            )

        data = self.parse_json(stdout)
        result = ScanResult(data, self.config)

        self.log.info(
            "trivy_scan_complete",
            returncode=returncode,
            vulnerabilities=result.vulnerability_count,
            ignored=result.ignored_count,
            duration=time.time() - start_time,
        )
        return result

    def scan_sync(self) -> ScanResult:
        """Blocking variant of scan() for callers without an event loop."""
        return asyncio.run(self.scan())

    def parse_json(self, output: str) -> dict[str, Any]:
        """Parse trivy's stdout; empty output is an empty report.

        Raises:
            ScanError: If the output is not a JSON object
        """
        if not output.strip():
            return {}

        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            self.log.error("trivy_output_invalid", error=str(e))
            raise ScanError(
                self.build_json_error_message(str(e), output),
                ScanErrorKind.INVALID_OUTPUT,
            ) from e

        if not isinstance(data, dict):
            error = f"expected a JSON object, got {type(data).__name__}"
            self.log.error("trivy_output_invalid", error=error)
            raise ScanError(self.build_json_error_message(error, output), ScanErrorKind.INVALID_OUTPUT)

        return data

    def build_error_message(self, exit_code: int, stderr: str) -> str:
        return (
            f"Trivy scan failed with exit code {exit_code}\n"
            "\n"
            "Error output:\n"
            f"{stderr.rstrip()}\n"
            "\n"
            "Possible causes:\n"
            "- Trivy database is outdated or corrupted\n"
            "- Network connectivity issues during database update\n"
            "- Invalid or corrupted lockfile\n"
            "- Insufficient disk space\n"
            "\n"
            "Troubleshooting steps:\n"
            "1. Update Trivy database: trivy image --download-db-only\n"
            "2. Check network connectivity\n"
            "3. Verify the lockfile is valid and up to date\n"
            "4. Check disk space: df -h\n"
            "\n"
            f"For more information, visit: {DOCS_URL}\n"
        )

    def build_json_error_message(self, error: str, output: str) -> str:
        preview = output[:OUTPUT_PREVIEW_CHARS]
        if len(output) > OUTPUT_PREVIEW_CHARS:
            preview += "...\n[truncated]"
        return (
            f"Invalid JSON output from Trivy: {error}\n"
            "\n"
            "This may indicate:\n"
            f"- Trivy version incompatibility (requires Trivy {MIN_TRIVY_VERSION} or later)\n"
            "- Corrupted output due to interrupted execution\n"
            "- System error messages mixed with JSON output\n"
            "\n"
            "Output received:\n"
            f"{preview}\n"
            "\n"
            "Troubleshooting:\n"
            "1. Check Trivy version: trivy --version\n"
            "2. Update Trivy to latest version\n"
            f"3. Run Trivy manually: trivy fs --format json {self.project_root}\n"
        )

    def build_timeout_error_message(self, timeout: int) -> str:
        return (
            f"Trivy scan timed out after {timeout} seconds\n"
            "\n"
            "This may occur when:\n"
            "- Scanning a very large project with many dependencies\n"
            "- Slow network connection during database updates\n"
            "- System resource constraints\n"
            "\n"
            "Solutions:\n"
            f"1. Increase timeout in config: scanning.timeout: {timeout * 2}\n"
            "   (or set TRIVY_GATE_TIMEOUT)\n"
            "2. Update Trivy database before scanning: trivy image --download-db-only\n"
            "3. Check system resources: top or htop\n"
            "\n"
            f"Current timeout: {timeout} seconds\n"
            "Suggested timeout for large projects: 300+ seconds\n"
        )

    def build_not_installed_message(self) -> str:
        return (
            f"{self.binary_name} not installed.\n"
            f"Install: {INSTALL_URL}\n"
            "  brew install trivy (macOS) or apt-get install trivy (Linux)\n"
        )
