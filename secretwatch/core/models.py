from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"


FindingKey = Tuple[str, str]


def utc_timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class Match:
    """A scanner hit without any tab context."""

    secret_type: str
    severity: Severity
    matched_text: str
    start: int
    end: int
    pattern: str = ""


@dataclass(frozen=True)
class SecretFinding:
    secret_type: str
    severity: Severity
    matched_text: str
    source_locator: str
    discovered_at: str = field(default_factory=utc_timestamp)

    @property
    def key(self) -> FindingKey:
        # same text from the same source is the same finding, whichever channel saw it
        return (self.matched_text, self.source_locator)

    @classmethod
    def from_match(cls, match: Match, source_locator: str) -> "SecretFinding":
        return cls(
            secret_type=match.secret_type,
            severity=match.severity,
            matched_text=match.matched_text,
            source_locator=source_locator,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_type": self.secret_type,
            "severity": self.severity.value,
            "matched_text": self.matched_text,
            "source_locator": self.source_locator,
            "discovered_at": self.discovered_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecretFinding":
        return cls(
            secret_type=str(data["secret_type"]),
            severity=Severity(data.get("severity", Severity.HIGH.value)),
            matched_text=str(data["matched_text"]),
            source_locator=str(data["source_locator"]),
            discovered_at=str(data.get("discovered_at") or utc_timestamp()),
        )


@dataclass(frozen=True)
class ScriptFetchError:
    script_url: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"script_url": self.script_url, "error": self.error}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptFetchError":
        return cls(script_url=str(data["script_url"]), error=str(data.get("error", "")))


@dataclass
class TabRecord:
    """Per-tab aggregate of findings and fetch errors.

    ``findings`` keeps insertion order and is unique by ``SecretFinding.key``;
    ``errors`` is unique by ``script_url``. Only the tab state store hands out
    records for mutation, and only inside its serialized update.
    """

    instrumentation_active: bool = False
    findings: List[SecretFinding] = field(default_factory=list)
    errors: List[ScriptFetchError] = field(default_factory=list)

    def has_finding(self, key: FindingKey) -> bool:
        return any(f.key == key for f in self.findings)

    def add_finding(self, finding: SecretFinding) -> bool:
        if self.has_finding(finding.key):
            return False
        self.findings.append(finding)
        return True

    def record_error(self, error: ScriptFetchError) -> None:
        for idx, existing in enumerate(self.errors):
            if existing.script_url == error.script_url:
                self.errors[idx] = error
                return
        self.errors.append(error)

    def clear(self) -> None:
        """Reset findings and errors; the instrumentation flag is left alone."""
        self.findings.clear()
        self.errors.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instrumentation_active": self.instrumentation_active,
            "findings": [f.to_dict() for f in self.findings],
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TabRecord":
        if not data:
            return cls()
        record = cls(instrumentation_active=bool(data.get("instrumentation_active", False)))
        for item in data.get("findings") or []:
            record.add_finding(SecretFinding.from_dict(item))
        for item in data.get("errors") or []:
            record.record_error(ScriptFetchError.from_dict(item))
        return record


@dataclass
class FileReport:
    """Scanner output for one local script file (CLI file/dir modes)."""

    file_location: str
    matches: List[Match] = field(default_factory=list)
    line_numbers: List[int] = field(default_factory=list)
