"""trivy-gate: policy-driven Trivy scanning for dependency lockfiles.

Resolves layered configuration, runs trivy against a project's lockfiles,
filters findings through time-limited ignore rules, and decides whether the
calling workflow should be blocked.
"""

from .core import (
    BlockReason,
    ConfigError,
    ConfigResolver,
    Configuration,
    IgnoreRule,
    ScanResult,
    Severity,
    Verdict,
    Vulnerability,
    decide,
    load_config,
)
from .tools import ScanError, ScanErrorKind, TrivyScanner

__version__ = "0.1.0"

__all__ = [
    "BlockReason",
    "ConfigError",
    "ConfigResolver",
    "Configuration",
    "IgnoreRule",
    "ScanError",
    "ScanErrorKind",
    "ScanResult",
    "Severity",
    "TrivyScanner",
    "Verdict",
    "Vulnerability",
    "decide",
    "load_config",
]
