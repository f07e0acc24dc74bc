from __future__ import annotations

from typing import List, Optional

from .models import SecretFinding

EXTENSION_SCHEMES = ("chrome-extension://", "moz-extension://")


def filter_with_reason(finding: SecretFinding) -> Optional[str]:
    """Return None for findings worth showing, else the likely-false-positive reason."""
    if finding.source_locator.startswith(EXTENSION_SCHEMES):
        # scripts injected by other browser extensions, not by the page
        return "extension"
    return None


def visible_findings(findings: List[SecretFinding]) -> List[SecretFinding]:
    return [f for f in findings if filter_with_reason(f) is None]
