"""Answer normalisation for audio challenges.

Speech APIs return spoken digits as words ("eight five") in whatever
locale the challenge audio used.  :func:`normalize` lower-cases the
transcript, strips punctuation per token, maps spoken digit words
(English, French, German, Spanish) to digits and collapses pure digit
sequences into a single string ("85").
"""

import re
from typing import Any, Dict, List

NUMBER_MAP: Dict[str, str] = {
    # English
    "zero": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
    "ten": "10",
    # French ("six" shared with English)
    "zéro": "0", "un": "1", "deux": "2", "trois": "3", "quatre": "4",
    "cinq": "5", "sept": "7", "huit": "8", "neuf": "9",
    "dix": "10",
    # German
    "null": "0", "eins": "1", "zwei": "2", "drei": "3", "vier": "4",
    "fünf": "5", "sechs": "6", "sieben": "7", "acht": "8", "neun": "9",
    "zehn": "10",
    # Spanish
    "cero": "0", "uno": "1", "dos": "2", "tres": "3", "cuatro": "4",
    "cinco": "5", "seis": "6", "siete": "7", "ocho": "8", "nueve": "9",
    "diez": "10",
}

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()?\"'\[\]]")
_DIGITS = re.compile(r"^\d+$")


def _translate(token: str) -> str:
    clean = _PUNCTUATION.sub("", token)
    return NUMBER_MAP.get(clean, clean)


def tokenize(text: str) -> List[str]:
    """Lower-case and split *text* into translated, non-empty tokens."""
    tokens = [_translate(t) for t in text.lower().split()]
    return [t for t in tokens if t]


def normalize(text: Any) -> str:
    """Normalise a raw transcript into a typed answer.

    Examples::

        normalize("85")          -> "85"
        normalize("Eight five.") -> "85"
        normalize("acht fünf")   -> "85"
        normalize("hello world") -> "hello world"

    Args:
        text: Raw transcript.  Non-string input yields ``""``.

    Returns:
        Digits concatenated without separator when every token is a
        digit sequence, otherwise tokens joined by single spaces.
    """
    if not text or not isinstance(text, str):
        return ""

    lower = text.lower().strip()
    if _DIGITS.match(lower):
        return lower

    translated = tokenize(lower)
    if translated and all(_DIGITS.match(t) for t in translated):
        return "".join(translated)
    return " ".join(translated)
