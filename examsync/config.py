"""
Shared settings for parsing, importing and the CLI host.

Everything here is a plain constant so that tests and callers can read the
same limits the parser enforces. The only dynamic value is the data
directory, which can be overridden by the environment.
"""

from __future__ import annotations

import os
from pathlib import Path


PACKAGE_DIR = Path(__file__).resolve().parent

# Environment variable that points the CLI to another data folder
DATA_DIR_ENV = "EXAMSYNC_DATA_DIR"

DEFAULT_DELIMITER = ";"

# Length bounds shared by the parser, the engine and the normalizer
MAX_CODE_LENGTH = 50
MAX_TITLE_LENGTH = 500

# Upload ceilings (bytes)
MAX_COURSE_UPLOAD_BYTES = 5 * 1024 * 1024
MAX_EXAM_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_UPLOAD_EXTENSIONS = (".csv", ".txt")

# How many errors / warnings the CLI shows before "... and N more"
REPORT_PREVIEW_LIMIT = 5


def default_data_dir() -> Path:
    """
    Return the folder holding courses.json / exams.json / links.json.

    EXAMSYNC_DATA_DIR wins over the package-local default so that tests
    and deployments never write into the installed package.
    """
    override = os.environ.get(DATA_DIR_ENV, "").strip()
    if override:
        return Path(override)
    return PACKAGE_DIR / "data"


def upload_limit(kind: str) -> int:
    """
    Size ceiling for one upload kind ("courses", "exams" or "planning").
    """
    if kind in ("exams", "planning"):
        return MAX_EXAM_UPLOAD_BYTES
    return MAX_COURSE_UPLOAD_BYTES
