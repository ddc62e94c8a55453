from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import re
from typing import List, Tuple


class StepKind(str, Enum):
    STEP = "STEP"
    CHECK = "CHECK"
    WARNING = "WARNING"
    META = "META"


_CODE_RE = re.compile(r"^[A-Z][A-Z0-9_]{2,63}$")  # e.g. ZONE, BASE_PRICE, PROMOTION


def _validate_code(code: str) -> str:
    if not isinstance(code, str):
        raise TypeError("step code must be str")
    code = code.strip()
    if not _CODE_RE.match(code):
        raise ValueError(f"invalid step code '{code}'. Expected UPPER_SNAKE (3-64 chars), e.g. BASE_PRICE")
    return code


LABEL_MAX = 64


def label(value: object) -> str:
    """
    Catalog text (names, ids) made safe for a step message:
    whitespace runs collapse to one space, long values are cut to LABEL_MAX.
    """
    text = " ".join(str(value).split())
    if len(text) > LABEL_MAX:
        text = text[: LABEL_MAX - 3].rstrip() + "..."
    return text or "-"


def _validate_message(message: str) -> str:
    if not isinstance(message, str):
        raise TypeError("step message must be str")
    msg = message.strip()
    if not msg:
        raise ValueError("step message must be non-empty")
    # one line per step: output goes to logs, CSV exports and UIs
    if "\n" in msg or "\r" in msg or "\t" in msg:
        raise ValueError("step message may not contain newlines or tabs")
    if len(msg) > 240:
        raise ValueError("step message too long (max 240 chars)")
    return msg


@dataclass(frozen=True)
class StepEntry:
    seq: int
    kind: StepKind
    code: str
    message: str


@dataclass
class PriceSteps:
    """
    Explain trail written while a price is calculated.
    Codes are kept for tests; the breakdown only carries rendered strings.
    """

    _entries: List[StepEntry] = field(default_factory=list)

    @property
    def entries(self) -> List[StepEntry]:
        return list(self._entries)

    def codes(self) -> List[str]:
        return [e.code for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def step(self, code: str, message: str) -> None:
        self._append(StepKind.STEP, code, message)

    def check(self, code: str, message: str) -> None:
        self._append(StepKind.CHECK, code, message)

    def warning(self, code: str, message: str) -> None:
        self._append(StepKind.WARNING, code, message)

    def meta(self, code: str, message: str) -> None:
        self._append(StepKind.META, code, message)

    def _append(self, kind: StepKind, code: str, message: str) -> None:
        self._entries.append(
            StepEntry(seq=len(self._entries) + 1, kind=kind, code=_validate_code(code), message=_validate_message(message))
        )


class BreakdownBuilder:
    """Renders PriceSteps to the output contract: tuple of strings, insertion order."""

    def build(self, steps: PriceSteps) -> Tuple[str, ...]:
        if not isinstance(steps, PriceSteps):
            raise TypeError("BreakdownBuilder.build expects a PriceSteps instance")
        return tuple(self._render(e) for e in sorted(steps.entries, key=lambda e: e.seq))

    def _render(self, e: StepEntry) -> str:
        if e.kind == StepKind.CHECK:
            return f"OK: {e.message}"
        if e.kind == StepKind.WARNING:
            return f"WARNING: {e.message}"
        if e.kind == StepKind.META:
            return f"META: {e.message}"
        return e.message
