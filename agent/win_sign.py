# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: checks Windows Authenticode signatures for executable files using PowerShell, and wraps that check in a
small TrustResolver capability so the rest of the code never branches on the platform itself.
the authoritative check is slow (one PowerShell process per file) so it is only used for single-item detail views.
any failure along the way (missing file, no PowerShell, non-zero exit, garbage output) falls back to the quick
path heuristic instead of failing the caller.
"""

from __future__ import annotations  # lets us use string annotations before functions are defined

import json  # for parsing JSON output from PowerShell
import logging
import os  # for checking if the file path exists
import subprocess  # for running PowerShell commands
import sys  # for checking if we are on Windows
from abc import ABC, abstractmethod

from agent.models import TrustMetadata
from agent.trust import quick_trust_from_path, subject_cn

log = logging.getLogger("sentinel.trust")

POWERSHELL_TIMEOUT_SEC = 10


def _fallback(path: str, why: str) -> TrustMetadata:
    log.debug("signature check for %s fell back to heuristic: %s", path, why)
    return quick_trust_from_path(path)


def get_signature_details(path: str) -> TrustMetadata:
    """
    Windows-only: verifies the Authenticode signature of path and returns {signed, publisher}.
    publisher is the CN of the signer certificate subject. never raises.
    """
    p = (path or "").strip().strip('"')  # clean up the path, remove whitespace and quotes
    if not p:
        return TrustMetadata()  # nothing to check and nothing to guess from
    if sys.platform != "win32":  # no Authenticode outside Windows
        return quick_trust_from_path(p)
    if not os.path.exists(p):  # can not verify a file that is not there
        return _fallback(p, "file does not exist")

    ps = [
        "powershell",  # run PowerShell
        "-NoProfile",  # do not load user profile (faster startup)
        "-NonInteractive",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
        "$s=Get-AuthenticodeSignature -FilePath '{}' ; "
        "$o=@{{ status=[string]$s.Status; subject=($s.SignerCertificate.Subject) }} ; "
        "ConvertTo-Json -Compress -InputObject $o".format(
            p.replace("'", "''")  # escape single quotes for the PowerShell string literal
        ),
    ]
    try:
        proc = subprocess.run(ps, capture_output=True, text=True, timeout=POWERSHELL_TIMEOUT_SEC)
    except (OSError, subprocess.SubprocessError) as exc:  # PowerShell missing, timed out, etc
        return _fallback(p, str(exc))
    if proc.returncode != 0:
        return _fallback(p, f"powershell exited with {proc.returncode}")
    out = (proc.stdout or "").strip()
    if not out:
        return _fallback(p, "empty output")
    try:
        data = json.loads(out)
    except ValueError:
        return _fallback(p, "output is not JSON")
    if not isinstance(data, dict):
        return _fallback(p, "output is not a JSON object")

    signed = str(data.get("status") or "").lower() == "valid"
    subject = data.get("subject")
    publisher = subject_cn(subject) if isinstance(subject, str) else None
    return TrustMetadata(signed=signed, publisher=publisher)


class TrustResolver(ABC):
    """two-tier trust lookup: quick() for bulk listings, details() for a single item."""

    def quick(self, path: str | None) -> TrustMetadata:
        return quick_trust_from_path(path)

    @abstractmethod
    def details(self, path: str | None) -> TrustMetadata: ...


class HeuristicTrustResolver(TrustResolver):
    """platforms without a native signature facility: details are the quick guess."""

    def details(self, path: str | None) -> TrustMetadata:
        return quick_trust_from_path(path)


class WindowsTrustResolver(TrustResolver):
    def details(self, path: str | None) -> TrustMetadata:
        if not path:
            return TrustMetadata()
        return get_signature_details(path)


def get_trust_resolver() -> TrustResolver:
    if sys.platform == "win32":
        return WindowsTrustResolver()
    return HeuristicTrustResolver()
