"""Blocking decision for a finished scan.

Determines whether the calling workflow should treat a scan as a failure.
CRITICAL findings are checked first so the reported reason is the most
specific one that applies.

`fail_on.high` is not consulted here. It is resolved and
validated with the rest of the configuration and left for the reporter and
for stricter policies layered on top of `decide`.

Provides:
- BlockReason: Why a verdict blocks (or NONE)
- Verdict: Outcome of the decision
- decide: Compute a verdict from a ScanResult and Configuration
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from trivygate.core.config import Configuration
from trivygate.core.scan_result import ScanResult


class BlockReason(str, Enum):
    NONE = "none"
    CRITICAL_PRESENT = "critical_present"
    ANY_PRESENT = "any_present"


BLOCK_MESSAGES = {
    BlockReason.NONE: "",
    BlockReason.CRITICAL_PRESENT: "CRITICAL vulnerabilities found. Install blocked.",
    BlockReason.ANY_PRESENT: "Vulnerabilities found. Install blocked.",
}


class Verdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    should_block: bool = False
    reason: BlockReason = BlockReason.NONE

    @property
    def message(self) -> str:
        return BLOCK_MESSAGES[self.reason]


def decide(result: ScanResult, config: Configuration) -> Verdict:
    """Decide whether the scan should block the caller.

    Args:
        result: Filtered scan results
        config: Resolved configuration

    Returns:
        Verdict with should_block and the reason
    """
    if result.has_critical_vulnerabilities and config.fail_on.critical:
        return Verdict(should_block=True, reason=BlockReason.CRITICAL_PRESENT)

    if result.has_vulnerabilities and config.fail_on.any:
        return Verdict(should_block=True, reason=BlockReason.ANY_PRESENT)

    return Verdict()
