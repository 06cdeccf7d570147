"""Core policy engine.

Provides:
- Layered configuration resolution and validation
- Severity ordering and CVSS scoring
- Vulnerability model and filtered scan results
- Blocking policy decision
"""

from .config import ConfigError, ConfigResolver, Configuration, IgnoreRule, load_config
from .policy import BlockReason, Verdict, decide
from .scan_result import ScanResult
from .severity import Severity
from .vulnerability import Vulnerability

__all__ = [
    "ConfigError",
    "ConfigResolver",
    "Configuration",
    "IgnoreRule",
    "load_config",
    "BlockReason",
    "Verdict",
    "decide",
    "ScanResult",
    "Severity",
    "Vulnerability",
]
