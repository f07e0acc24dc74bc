from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union, overload

from ..core.models import Severity

RegexLike = Union[str, "re.Pattern[str]"]


def _compile(rx: RegexLike, flags: int = 0) -> "re.Pattern[str]":
    if isinstance(rx, re.Pattern):
        return rx
    return re.compile(rx, flags)


@dataclass(frozen=True)
class PatternDefinition:
    """One detector in the catalog.

    ``matcher`` is run over the whole text with ``finditer``; ``ignore_filters``
    are searched against each candidate and any hit discards it. Severity is a
    triage hint only and never suppresses a finding.
    """

    secret_type: str
    matcher: "re.Pattern[str]"
    severity: Severity = Severity.HIGH
    ignore_filters: Tuple["re.Pattern[str]", ...] = ()

    @classmethod
    def build(
        cls,
        secret_type: str,
        matcher: RegexLike,
        *,
        severity: Severity = Severity.HIGH,
        ignore: Iterable[RegexLike] = (),
        flags: int = 0,
    ) -> "PatternDefinition":
        return cls(
            secret_type=secret_type,
            matcher=_compile(matcher, flags),
            severity=severity,
            ignore_filters=tuple(_compile(rx, flags) for rx in ignore),
        )

    def is_ignored(self, candidate: str) -> bool:
        return any(rx.search(candidate) for rx in self.ignore_filters)

    def with_ignore(self, *filters: RegexLike) -> "PatternDefinition":
        extra = tuple(_compile(rx, self.matcher.flags & re.IGNORECASE) for rx in filters)
        return replace(self, ignore_filters=self.ignore_filters + extra)


class PatternCatalog(Sequence[PatternDefinition]):
    """Read-only, ordered sequence of detectors, most specific first.

    Order matters: the scanner lets earlier entries claim a text range before
    later, more generic entries can match it.
    """

    def __init__(self, patterns: Iterable[PatternDefinition]) -> None:
        self._patterns: Tuple[PatternDefinition, ...] = tuple(patterns)

    @overload
    def __getitem__(self, index: int) -> PatternDefinition: ...

    @overload
    def __getitem__(self, index: slice) -> Sequence[PatternDefinition]: ...

    def __getitem__(self, index):
        return self._patterns[index]

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[PatternDefinition]:
        return iter(self._patterns)

    def __repr__(self) -> str:
        return f"PatternCatalog({[p.secret_type for p in self._patterns]!r})"

    @property
    def secret_types(self) -> List[str]:
        return [p.secret_type for p in self._patterns]

    def get(self, secret_type: str) -> Optional[PatternDefinition]:
        for pattern in self._patterns:
            if pattern.secret_type == secret_type:
                return pattern
        return None

    def with_ignore_filters(self, extra: Mapping[str, Sequence[RegexLike]]) -> "PatternCatalog":
        """Return a new catalog with extra ignore regexes per secret type."""
        unknown = sorted(set(extra) - set(self.secret_types))
        if unknown:
            raise ValueError(f"unknown secret type(s): {', '.join(unknown)}")
        updated: List[PatternDefinition] = []
        for pattern in self._patterns:
            filters = extra.get(pattern.secret_type)
            updated.append(pattern.with_ignore(*filters) if filters else pattern)
        return PatternCatalog(updated)

