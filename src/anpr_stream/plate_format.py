# plate_format.py
# Plate text: OCR confusion correction, canonical form, format grammar
# Standard (IN): XX 00 XX 0000   region + series + letters + number
# BH series:     00 BH 0000 XX   year + marker + number + letters

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

# === Substitution table ===

# Letter -> digit, applied to every position (fixed one-to-one table)
OCR_CONFUSIONS = {
    'O': '0', 'I': '1', 'Z': '2', 'S': '5',
    'B': '8', 'G': '6', 'T': '7',
}

MAX_PLATE_LENGTH = 10

# State / union territory codes
REGION_CODES = (
    "AN", "AP", "AR", "AS", "BR", "CG", "CH", "DD", "DL", "DN", "GA", "GJ",
    "HP", "HR", "JH", "JK", "KA", "KL", "LA", "LD", "MH", "ML", "MN", "MP",
    "MZ", "NL", "OD", "OR", "PB", "PY", "RJ", "SK", "TN", "TR", "TS", "UK",
    "UP", "WB",
)

# Series letters never use I and O (read as 1 and 0)
SERIES_LETTERS = "A-HJ-NP-Z"

BH_MARKER = "BH"

# Fixed-length regex of the earlier releases, kept as the "simple" grammar
SIMPLE_PATTERN = r"^[A-Z]{2}[0-9]{2}[A-Z]{1,2}[0-9]{4}$"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


@dataclass(frozen=True)
class PlateCandidate:
    text: str
    valid: bool


class PlateTextNormalizer:
    """Raw OCR text -> canonical plate text.

    Uppercase, drop everything but A-Z/0-9, apply the confusion table,
    clamp to max_length. Pure; the table must not chain (no value may also
    be a key), so normalize(normalize(x)) == normalize(x).
    """

    def __init__(self, substitutions: Optional[Dict[str, str]] = None,
                 max_length: int = MAX_PLATE_LENGTH):
        table = dict(OCR_CONFUSIONS if substitutions is None else substitutions)
        for src, dst in table.items():
            if len(src) != 1 or len(dst) != 1:
                raise ValueError(f"Substitution must map one char to one char: {src!r}->{dst!r}")
            if dst in table:
                raise ValueError(f"Substitution chains through {dst!r}")
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self.substitutions = table
        self.max_length = max_length
        self._translate = str.maketrans(table)

    def normalize(self, raw: Optional[str]) -> str:
        if not raw:
            return ""
        text = _NON_ALNUM.sub("", raw.upper())
        text = text.translate(self._translate)
        return text[:self.max_length]

    __call__ = normalize


def standard_pattern(region_codes: Iterable[str] = REGION_CODES) -> str:
    regions = "|".join(sorted(set(region_codes)))
    return rf"^(?:{regions})[0-9]{{1,2}}[{SERIES_LETTERS}]{{1,2}}[0-9]{{4}}$"


def bh_pattern() -> str:
    return rf"^[0-9]{{2}}{BH_MARKER}[0-9]{{4}}[{SERIES_LETTERS}]{{1,2}}$"


class PlateValidator:
    """Syntactic plate check against one of two grammars.

    standard - region code from the list, 1-2 digit series, 1-2 series
               letters (no I/O), 4 digits; or the BH series.
    simple   - SIMPLE_PATTERN only.

    Text coming out of the default normalizer has no B/G/I/O/S/T/Z, so BH
    plates and region codes such as TN, GJ, OD or BR only validate once
    `plate.substitutions` is narrowed (see OCR_CONFUSIONS).
    """

    GRAMMARS = ("standard", "simple")

    def __init__(self, grammar: str = "standard",
                 region_codes: Optional[Iterable[str]] = None):
        if grammar not in self.GRAMMARS:
            raise ValueError(f"Unknown plate grammar: {grammar}")
        self.grammar = grammar
        if grammar == "standard":
            self._patterns = (
                re.compile(standard_pattern(region_codes or REGION_CODES)),
                re.compile(bh_pattern()),
            )
        else:
            self._patterns = (re.compile(SIMPLE_PATTERN),)

    def is_valid(self, text: Optional[str]) -> bool:
        if not text:
            return False
        return any(p.match(text) for p in self._patterns)

    __call__ = is_valid

    def candidate(self, text: str) -> PlateCandidate:
        return PlateCandidate(text=text, valid=self.is_valid(text))
