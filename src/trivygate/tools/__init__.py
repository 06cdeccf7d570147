"""External tool wrappers.

Provides:
- Subprocess infrastructure with timeout and process-group kill
- TrivyScanner for lockfile vulnerability scans
"""

from .base import check_binary, run_subprocess
from .trivy import ScanError, ScanErrorKind, TrivyScanner

__all__ = [
    "check_binary",
    "run_subprocess",
    "ScanError",
    "ScanErrorKind",
    "TrivyScanner",
]
