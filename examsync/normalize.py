"""
Code normalization.

Exam codes coming from the planning exports carry variant markers that the
course catalog does not know about:

    WMDS2221=E          -> WMDS2221
    WFARM1282(T)=E      -> WFARM1282
    WFARM2244+2504=E    -> WFARM2244
    WRDTH3120=E (Q1)    -> WRDTH3120
    MATH101-A           -> MATH101
    LBIO1111/2          -> LBIO1111

normalize_code() is the only place that knows this rule. The import engine
(course lookup for exams) and the matcher both call it, so bumping
NORMALIZER_VERSION is required whenever the rule below changes.
"""

from __future__ import annotations

import re
from typing import Any

from examsync.config import MAX_CODE_LENGTH


NORMALIZER_VERSION = "1"

# Everything from the first of these characters on is a variant marker
_MARKERS = ("=", "(", "+")

# One trailing sitting / part suffix: "-A", "-02", "/2"
_SITTING_SUFFIX_RE = re.compile(r"[-/][A-Z0-9]{1,2}$")


def normalize_code(raw_code: Any) -> str:
    """
    Map a free-form code to its canonical matching key (rule v1).

    Total and deterministic: non-strings and blanks give "".
    """
    if not isinstance(raw_code, str):
        return ""

    code = raw_code.strip().upper()

    for marker in _MARKERS:
        code = code.split(marker, 1)[0]
    code = code.strip()

    # Only strip when something meaningful is left in front of the suffix
    stripped = _SITTING_SUFFIX_RE.sub("", code)
    if stripped.strip():
        code = stripped

    return code.strip()[:MAX_CODE_LENGTH].rstrip()
