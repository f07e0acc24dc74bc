from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import MalformedEventError

SCRIPT_PARSED = "Debugger.scriptParsed"
INLINE_SCRIPT = "inline script"


@dataclass(frozen=True)
class ScriptDetected:
    """Passive channel report: a script element appeared in a page.

    Exactly one of ``content`` (inline script) and ``script_url`` (external
    script) is set.
    """

    tab_id: int
    document_url: str
    content: Optional[str] = None
    script_url: Optional[str] = None

    @property
    def source_locator(self) -> str:
        return self.script_url if self.script_url else self.document_url

    @classmethod
    def from_message(cls, tab_id: Optional[int], message: Mapping[str, Any]) -> "ScriptDetected":
        if tab_id is None:
            raise MalformedEventError("script report without a tab id")
        document_url = str(message.get("documentUrl") or "")
        content = message.get("content")
        url = message.get("url")
        if isinstance(content, str) and content:
            return cls(tab_id=tab_id, document_url=document_url, content=content)
        if isinstance(url, str) and url:
            return cls(tab_id=tab_id, document_url=document_url, script_url=url)
        raise MalformedEventError(f"script report for tab {tab_id} has neither content nor url")


@dataclass(frozen=True)
class ScriptParsed:
    """Instrumented channel event for a parsed script."""

    script_id: str
    url: str = ""

    @property
    def source_locator(self) -> str:
        return self.url or INLINE_SCRIPT

    @property
    def error_locator(self) -> str:
        return self.url or f"script:{self.script_id}"

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> "ScriptParsed":
        script_id = (params or {}).get("scriptId")
        if script_id in (None, ""):
            raise MalformedEventError("scriptParsed event without scriptId")
        return cls(script_id=str(script_id), url=str((params or {}).get("url") or ""))
