"""Canonical form for free-text state strings."""

import re
import unicodedata
from typing import Optional

_WHITESPACE = re.compile(r"\s+")
_TRAILING_PUNCTUATION = ".,;:!?-_/\\'\"`()[]{}"

# Well-known abbreviations and compact spellings, normalized key -> canonical long form.
# Used for alias lookup only.
ABBREVIATIONS: dict[str, str] = {
    "ap": "Andhra Pradesh",
    "andhrapradesh": "Andhra Pradesh",
    "ar": "Arunachal Pradesh",
    "as": "Assam",
    "br": "Bihar",
    "cg": "Chhattisgarh",
    "ct": "Chhattisgarh",
    "ga": "Goa",
    "gj": "Gujarat",
    "hr": "Haryana",
    "hp": "Himachal Pradesh",
    "himachalpradesh": "Himachal Pradesh",
    "jh": "Jharkhand",
    "ka": "Karnataka",
    "kl": "Kerala",
    "mp": "Madhya Pradesh",
    "madhyapradesh": "Madhya Pradesh",
    "mh": "Maharashtra",
    "mn": "Manipur",
    "ml": "Meghalaya",
    "mz": "Mizoram",
    "nl": "Nagaland",
    "or": "Odisha",
    "od": "Odisha",
    "orissa": "Odisha",
    "pb": "Punjab",
    "rj": "Rajasthan",
    "sk": "Sikkim",
    "tn": "Tamil Nadu",
    "tamilnadu": "Tamil Nadu",
    "ts": "Telangana",
    "tg": "Telangana",
    "tr": "Tripura",
    "up": "Uttar Pradesh",
    "uttarpradesh": "Uttar Pradesh",
    "uk": "Uttarakhand",
    "ut": "Uttarakhand",
    "uttrakhand": "Uttarakhand",
    "uttaranchal": "Uttarakhand",
    "wb": "West Bengal",
    "westbengal": "West Bengal",
    "an": "Andaman and Nicobar Islands",
    "ch": "Chandigarh",
    "dl": "Delhi",
    "dlh": "Delhi",
    "new delhi": "Delhi",
    "ncr": "Delhi",
    "jk": "Jammu and Kashmir",
    "j&k": "Jammu and Kashmir",
    "la": "Ladakh",
    "ld": "Lakshadweep",
    "py": "Puducherry",
    "pondicherry": "Puducherry",
}


def transliterate(value: str) -> str:
    """Drop combining marks so accented Latin letters compare equal to plain ones."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(value: Optional[str]) -> str:
    """
    Canonicalize a raw state string for comparison.

    Applies NFKC, case folding, diacritic stripping, trimming, whitespace
    collapsing and trailing punctuation removal. The stored raw value is never
    touched; this is only the comparison key.
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKC", str(value))
    text = transliterate(text).casefold()
    text = _WHITESPACE.sub(" ", text).strip()
    text = text.rstrip(_TRAILING_PUNCTUATION).rstrip()
    return text


def expand_abbreviation(normalized: str) -> Optional[str]:
    """Canonical long form for a normalized abbreviation, if it is a known one."""
    if normalized in ABBREVIATIONS:
        return ABBREVIATIONS[normalized]
    compact = normalized.replace(" ", "").replace(".", "")
    return ABBREVIATIONS.get(compact)
