from __future__ import annotations

"""
Literal text helpers shared by the scanner, normalizer and gate.

Design intent:
- Match on accent-folded lower-case text, but always quote the original text.
- Folding is one character in, one character out, so match offsets on folded
  text index the original text directly.
- Vital readings are only ever parsed from literal numbers; nothing is inferred.
"""

import re
import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Mapping

MAX_QUOTE_CHARS = 180

VITAL_FIELDS: tuple[str, ...] = (
    "spo2_initial",
    "spo2_on_o2",
    "hr",
    "bp_systolic",
    "bp_diastolic",
    "temp",
    "rr",
)


@dataclass(frozen=True)
class Fragment:
    start: int
    end: int
    text: str


@dataclass(frozen=True)
class VitalReading:
    vital: str
    value: float
    secondary: float | None
    fragment: Fragment
    start: int
    end: int
    on_o2: bool = False

    @property
    def literal(self) -> str:
        return self.fragment.text[self.start - self.fragment.start : self.end - self.fragment.start]


_FRAGMENT_SPLIT_RE = re.compile(r"\.(?!\d)|[;!?\n]")

_SPO2_RE = re.compile(
    r"\b(?:spo2|sato2|sat|saturacao|saturando)\b(?:\s*(?:de\s+)?o2\b)?"
    r"[^0-9\n]{0,15}?(\d{2,3})(?:[.,]\d)?\s*%?"
)
# "sat o2" names the measurement, not oxygen therapy.
_SATURATION_LABEL_RE = re.compile(r"\b(?:sat|saturacao)\s*(?:de\s+)?o2\b")
_BP_RE = re.compile(
    r"\b(?:pa|pas|bp|pressao(?:\s+arterial)?)\b[^0-9\n]{0,10}?(\d{2,3})\s*(?:x|/|por)\s*(\d{2,3})\b"
)
_BARE_BP_RE = re.compile(r"\b(\d{2,3})\s*[x/]\s*(\d{2,3})\b")
_HR_RE = re.compile(r"\b(?:fc|hr|pulso|frequencia\s+cardiaca)\b[^0-9\n]{0,10}?(\d{2,3})\b|\b(\d{2,3})\s*bpm\b")
_RR_RE = re.compile(
    r"\b(?:fr|rr|frequencia\s+respiratoria)\b[^0-9\n]{0,10}?(\d{1,2})\b|\b(\d{1,2})\s*(?:irpm|ipm|rpm)\b"
)
_TEMP_RE = re.compile(
    r"\b(?:temp|temperatura|tax)\b[^0-9\n]{0,10}?(\d{2}(?:[.,]\d)?)|\b(\d{2}[.,]\d)\s*(?:°\s*c?|o?\s*c\b)"
)
_PERCENT_RE = re.compile(r"\b\d{2,3}\s*%")
_FLOW_RE = re.compile(r"\b(\d{1,2}(?:[.,]\d)?)\s*l\s*/?\s*min\b")

_OXYGEN_CONTEXT_RE = re.compile(
    r"(?<![a-z0-9])(?:o2|oxigenio|cateter|mascara|venturi|cnaf|vni)(?![a-z0-9])|\bl\s*/?\s*min\b"
)
_ROOM_AIR_RE = re.compile(r"\b(?:ar\s+ambiente|aa)\b")

_DEVICE_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("mascara nao reinalante", re.compile(r"\bmascara\s+(?:nao\s+reinalante|com\s+reservatorio)\b")),
    ("mascara de venturi", re.compile(r"\b(?:mascara\s+de\s+)?venturi\b")),
    ("cateter nasal de alto fluxo", re.compile(r"\bcnaf\b|\bcateter\s+nasal\s+de\s+alto\s+fluxo\b")),
    ("ventilacao nao invasiva", re.compile(r"\bvni\b")),
    ("cateter nasal", re.compile(r"\bcateter(?:\s+nasal)?(?:\s+de\s+o2)?\b")),
    ("mascara", re.compile(r"\bmascara\b")),
)

_RANGES: dict[str, tuple[float, float]] = {
    "spo2": (40.0, 100.0),
    "bp": (40.0, 300.0),
    "bp_diastolic": (20.0, 200.0),
    "hr": (20.0, 250.0),
    "rr": (4.0, 80.0),
    "temp": (30.0, 45.0),
}


@lru_cache(maxsize=4096)
def _fold_char(ch: str) -> str:
    if ch.isascii():
        return ch.lower()
    decomposed = unicodedata.normalize("NFKD", ch)
    base = "".join(c for c in decomposed if not unicodedata.combining(c))
    if not base:
        return " "
    lowered = base.lower()
    if len(lowered) == 1:
        return lowered
    return lowered[0]


def fold_text(text: str) -> str:
    return "".join(_fold_char(ch) for ch in str(text or ""))


def mask_saturation_label(folded: str) -> str:
    """Blank out "sat o2" labels so the "o2" in them is not read as oxygen therapy."""
    return _SATURATION_LABEL_RE.sub(lambda match: " " * len(match.group(0)), folded)


def iter_fragments(text: str) -> list[Fragment]:
    """Split text into sentence-like fragments, keeping offsets into the original."""
    raw = str(text or "")
    fragments: list[Fragment] = []
    cursor = 0
    bounds = [m.start() for m in _FRAGMENT_SPLIT_RE.finditer(raw)] + [len(raw)]
    for stop in bounds:
        chunk = raw[cursor:stop]
        stripped = chunk.strip()
        if stripped:
            start = cursor + (len(chunk) - len(chunk.lstrip()))
            fragments.append(Fragment(start=start, end=start + len(stripped), text=stripped))
        cursor = stop + 1
    return fragments


def literal_quote(fragment: Fragment, match_start: int, match_end: int, *, max_chars: int = MAX_QUOTE_CHARS) -> str:
    """Return the fragment, or a literal window of it around the match when it is too long."""
    if len(fragment.text) <= max_chars:
        return fragment.text
    rel_start = max(0, match_start - fragment.start)
    rel_end = min(len(fragment.text), max(rel_start, match_end - fragment.start))
    slack = max(0, max_chars - (rel_end - rel_start))
    left = max(0, rel_start - slack // 2)
    right = min(len(fragment.text), left + max_chars)
    left = max(0, right - max_chars)
    return fragment.text[left:right].strip()


def narrow_literal(text: str, *, max_chars: int = MAX_QUOTE_CHARS) -> str:
    value = str(text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[:max_chars].rstrip()


def find_first(pattern: re.Pattern[str], text: str) -> tuple[Fragment, int, int] | None:
    """First fragment whose folded text matches, with the absolute match offsets."""
    for fragment in iter_fragments(text):
        match = pattern.search(fold_text(fragment.text))
        if match:
            return fragment, fragment.start + match.start(), fragment.start + match.end()
    return None


def _to_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(str(raw).replace(",", "."))
    except ValueError:
        return None


def _in_range(key: str, value: float | None) -> bool:
    if value is None:
        return False
    low, high = _RANGES[key]
    return low <= value <= high


def find_vital_readings(text: str) -> list[VitalReading]:
    readings: list[VitalReading] = []
    for fragment in iter_fragments(text):
        folded = fold_text(fragment.text)
        context = mask_saturation_label(folded)
        on_o2 = bool(_OXYGEN_CONTEXT_RE.search(context)) and not _ROOM_AIR_RE.search(folded)

        for match in _SPO2_RE.finditer(folded):
            value = _to_float(match.group(1))
            if _in_range("spo2", value):
                readings.append(_reading("spo2", value, None, fragment, match, on_o2=on_o2))

        for match in _BP_RE.finditer(folded):
            systolic = _to_float(match.group(1))
            diastolic = _to_float(match.group(2))
            if _in_range("bp", systolic) and _in_range("bp_diastolic", diastolic):
                readings.append(_reading("bp", systolic, diastolic, fragment, match))

        for match in _HR_RE.finditer(folded):
            value = _to_float(match.group(1) or match.group(2))
            if _in_range("hr", value):
                readings.append(_reading("hr", value, None, fragment, match))

        for match in _RR_RE.finditer(folded):
            value = _to_float(match.group(1) or match.group(2))
            if _in_range("rr", value):
                readings.append(_reading("rr", value, None, fragment, match))

        for match in _TEMP_RE.finditer(folded):
            value = _to_float(match.group(1) or match.group(2))
            if _in_range("temp", value):
                readings.append(_reading("temp", value, None, fragment, match))
    return readings


def _reading(
    vital: str,
    value: float | None,
    secondary: float | None,
    fragment: Fragment,
    match: re.Match[str],
    *,
    on_o2: bool = False,
) -> VitalReading:
    return VitalReading(
        vital=vital,
        value=float(value or 0.0),
        secondary=secondary,
        fragment=fragment,
        start=fragment.start + match.start(),
        end=fragment.start + match.end(),
        on_o2=on_o2,
    )


def find_oxygen_flow(text: str) -> float | None:
    match = _FLOW_RE.search(fold_text(text))
    if not match:
        return None
    value = _to_float(match.group(1))
    if value is None or value <= 0 or value > 60:
        return None
    return value


def find_oxygen_device(text: str) -> str | None:
    folded = fold_text(text)
    for name, pattern in _DEVICE_RULES:
        if pattern.search(folded):
            return name
    return None


def vitals_have_numbers(vitals: Any) -> bool:
    if vitals is None:
        return False
    if isinstance(vitals, Mapping):
        values = [vitals.get(name) for name in VITAL_FIELDS] + [vitals.get("spo2")]
    else:
        values = [getattr(vitals, name, None) for name in VITAL_FIELDS]
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and value == value:
            return True
    return False


def has_numeric_anchor(text: str, vitals: Any = None) -> bool:
    """True when the note (or the extracted vitals) carries any measured vital-sign number."""
    if vitals_have_numbers(vitals):
        return True
    folded = fold_text(text)
    if _PERCENT_RE.search(folded) or _BARE_BP_RE.search(folded) or _FLOW_RE.search(folded):
        return True
    return bool(find_vital_readings(text))


def spo2_from_text(text: str) -> float | None:
    """First room-air SpO2 reading in the text, else the first reading at all."""
    readings = [item for item in find_vital_readings(text) if item.vital == "spo2"]
    for item in readings:
        if not item.on_o2:
            return item.value
    return readings[0].value if readings else None
