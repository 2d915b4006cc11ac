# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: pure trust scoring. maps an executable path, optional publisher, signed flag and display name to a risk
category, and provides the cheap path-based signature guess used by every bulk listing. no I/O happens here,
so everything in this module is safe to call in a tight loop over the whole process table.

rules are evaluated in order and the first match wins:
1. no path                                  -> unknown
2. name looks like a typosquatted system binary -> suspicious
3. unsigned and living in a temp directory  -> high
4. unsigned                                 -> medium
5. signed (publisher or not)                -> low
"""

from __future__ import annotations

from agent.models import RiskCategory, TrustMetadata

# digit-for-letter lookalikes of critical Windows process names
SUSPICIOUS_NAME_PATTERNS: tuple[str, ...] = ("svch0st", "exp1orer", "1sass", "csrsss")

# unsigned binaries running from here are treated as high risk
TEMP_PATH_MARKERS: tuple[str, ...] = ("\\temp\\", "\\tmp\\", "\\appdata\\local\\temp\\", "/tmp/")

# binaries under these directories are assumed signed by the quick heuristic
TRUSTED_PATH_MARKERS: tuple[str, ...] = (
    "\\windows\\",
    "\\program files\\",
    "\\program files (x86)\\",
    "/usr/bin/",
    "/bin/",
)


def assess_risk(
    path: str | None,
    publisher: str | None,
    signed: bool,
    process_name: str | None = None,
) -> RiskCategory:
    if not path:
        return RiskCategory.UNKNOWN

    path_lower = path.lower()
    name_lower = (process_name or path).lower()  # fall back to the path when there is no display name

    if any(p in name_lower for p in SUSPICIOUS_NAME_PATTERNS):
        return RiskCategory.SUSPICIOUS

    if not signed and any(m in path_lower for m in TEMP_PATH_MARKERS):
        return RiskCategory.HIGH

    if not signed:
        return RiskCategory.MEDIUM

    # a publisher only matters for display, signed is enough
    return RiskCategory.LOW


def quick_trust_from_path(path: str | None) -> TrustMetadata:
    """fast heuristic for list views; publisher is never filled in here."""
    if not path:
        return TrustMetadata()
    lower = path.lower()
    return TrustMetadata(signed=any(m in lower for m in TRUSTED_PATH_MARKERS), publisher=None)


def subject_cn(subject: str | None) -> str | None:
    """pull the common name out of an X.500 subject ("CN=Contoso, O=Contoso, C=US" -> "Contoso")."""
    if not subject:
        return None
    idx = subject.find("CN=")
    if idx < 0:
        return None
    rest = subject[idx + 3 :]
    end = rest.find(",")
    if end >= 0:
        rest = rest[:end]
    return rest.strip()


def extract_executable_path(command: str | None) -> str | None:
    """executable part of a command line: the quoted prefix, or the first whitespace-separated token."""
    trimmed = (command or "").strip()
    if not trimmed:
        return None
    if trimmed.startswith('"'):
        end = trimmed.find('"', 1)
        if end < 0:
            return None  # unbalanced quote, nothing reliable to return
        return trimmed[1:end]
    return trimmed.split()[0]
