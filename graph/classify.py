"""Answer classifiers for the intake questionnaire.

Each classifier takes the raw text the contact typed and returns a closed
enum. Matching is case-insensitive and works on substrings, so "Sí, es mi
primera" and "SI" are both affirmative.
"""

import re
from enum import Enum


class FirstHome(str, Enum):
    YES = "si"
    NO = "no"


class HomeType(str, Enum):
    HOUSE = "casa"
    APARTMENT = "departamento"


class WorkerCategory(str, Enum):
    DEPENDENT = "dependiente"
    INDEPENDENT = "independiente"
    PARTNER = "socio_empresa"
    UNRECOGNIZED = "unrecognized"


# Keywords win over menu numbers, and "independiente" contains "depend",
# so independent is tried first. Numbers only count as standalone tokens.
WORKER_PATTERNS = [
    (WorkerCategory.INDEPENDENT, re.compile(r"independ", re.IGNORECASE)),
    (WorkerCategory.PARTNER, re.compile(r"socio|partner", re.IGNORECASE)),
    (WorkerCategory.DEPENDENT, re.compile(r"depend", re.IGNORECASE)),
    (WorkerCategory.DEPENDENT, re.compile(r"\b1\b")),
    (WorkerCategory.INDEPENDENT, re.compile(r"\b2\b")),
    (WorkerCategory.PARTNER, re.compile(r"\b3\b")),
]

_SEPARATORS = re.compile(r"[^0-9A-Za-z]")


def normalize_identifier(raw: str) -> str:
    """Comparison form of a RUT: separators dropped, uppercased.

    >>> normalize_identifier("12.345.678-k")
    '12345678K'
    """
    return _SEPARATORS.sub("", raw or "").upper()


def classify_first_home(text: str) -> FirstHome:
    return FirstHome.YES if re.match(r"s", (text or "").strip(), re.IGNORECASE) else FirstHome.NO


def classify_home_type(text: str) -> HomeType:
    return HomeType.HOUSE if re.search(r"casa", text or "", re.IGNORECASE) else HomeType.APARTMENT


def classify_worker_type(text: str) -> WorkerCategory:
    for category, pattern in WORKER_PATTERNS:
        if pattern.search(text or ""):
            return category
    return WorkerCategory.UNRECOGNIZED
