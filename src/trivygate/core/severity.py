"""Severity levels and CVSS scoring for reported vulnerabilities.

Provides a closed, totally ordered severity enumeration so that grouping and
sorting never depend on display strings, plus the CVSS v3 helper used to
score a finding from its reported vector.

Provides:
- Severity: Enum for CRITICAL/HIGH/MEDIUM/LOW/UNKNOWN with a fixed order
- severity_sort_key: Display ordering for raw tokens (unrecognized sorts last)
- cvss_base_score: Base score from a CVSS v3.x vector string
"""

from enum import Enum

import structlog
from cvss import CVSS3
from cvss.exceptions import CVSS3Error

logger = structlog.get_logger()


class Severity(str, Enum):
    """Severity of a finding as reported by the scanner.

    Members are declared in display order: CRITICAL first, UNKNOWN last.
    Anything the scanner emits outside this set is treated as UNKNOWN for the
    data model, but ranks after UNKNOWN when the raw token is sorted.
    """

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        """Position in the fixed display order (0 = most severe)."""
        return _ORDER[self]

    # Order by rank, not by the str value: CRITICAL < HIGH < ... < UNKNOWN
    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def is_valid(cls, token: object) -> bool:
        """Check whether a token names a severity exactly (case-sensitive)."""
        return isinstance(token, str) and token in cls._value2member_map_

    @classmethod
    def parse(cls, token: object) -> "Severity":
        """Map a scanner token to a Severity, falling back to UNKNOWN.

        Scanner output is matched case-insensitively since older trivy
        releases and some advisories use lower-case levels.
        """
        if isinstance(token, str):
            member = cls._value2member_map_.get(token.strip().upper())
            if member is not None:
                return member
        return cls.UNKNOWN


_ORDER = {severity: index for index, severity in enumerate(Severity)}

UNRECOGNIZED_RANK = len(_ORDER)


def severity_sort_key(token: str | Severity) -> int:
    """Sort key for raw severity tokens as the scanner reported them.

    CRITICAL < HIGH < MEDIUM < LOW < UNKNOWN < anything unrecognized.
    Tokens are matched case-insensitively, like Severity.parse.
    """
    if isinstance(token, Severity):
        return token.rank
    if isinstance(token, str) and Severity.is_valid(token.strip().upper()):
        return Severity(token.strip().upper()).rank
    return UNRECOGNIZED_RANK


def cvss_base_score(vector: str | None) -> float | None:
    """Calculate the CVSS v3.x base score for a vector string.

    Args:
        vector: Vector such as "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H"

    Returns:
        Base score (0.0 - 10.0), or None when the vector is missing or malformed

    Example:
        >>> cvss_base_score("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H")
        9.8
    """
    if not vector:
        return None

    try:
        return float(CVSS3(vector).base_score)
    except CVSS3Error as e:
        logger.debug("cvss_vector_invalid", vector=vector, error=str(e))
        return None
