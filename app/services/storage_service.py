# app/services/storage_service.py
from __future__ import annotations

import os
import re
import time
from typing import List, Optional


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------

BASE_DIR = os.path.dirname(os.path.dirname(__file__))  # project/app -> project
DATA_DIR = os.getenv("DATA_DIR", os.path.join(BASE_DIR, "data"))
FILES_DIR = os.getenv("FILES_DIR", os.path.join(DATA_DIR, "files"))

os.makedirs(FILES_DIR, exist_ok=True)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _safe_name(name: str) -> str:
    base = os.path.basename(name or "").strip()
    base = _UNSAFE.sub("_", base).strip("._")
    return base or "file"


def _file_path(file_key: str) -> str:
    """
    Keys are flat names; anything that would escape FILES_DIR is rejected.
    """
    key = (file_key or "").strip()
    if not key or key != os.path.basename(key) or key in (".", ".."):
        raise ValueError(f"Invalid file key: {file_key!r}")
    return os.path.join(FILES_DIR, key)


def make_file_key(original_name: str) -> str:
    """
    '<epoch millis>-<sanitized name>', e.g. '1764586862873-invoice.pdf'.
    Never returns a key that is already stored.
    """
    millis = int(time.time() * 1000)
    safe = _safe_name(original_name)
    key = f"{millis}-{safe}"
    while os.path.exists(_file_path(key)):
        millis += 1
        key = f"{millis}-{safe}"
    return key


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def save_file(file_key: str, data: bytes) -> str:
    """
    Writes the blob and returns its path.
    """
    os.makedirs(FILES_DIR, exist_ok=True)
    path = _file_path(file_key)
    tmp_path = path + ".tmp"

    with open(tmp_path, "wb") as f:
        f.write(data)

    # atomic-ish replace
    os.replace(tmp_path, path)
    return path


def load_file(file_key: str) -> bytes:
    """
    Raises FileNotFoundError if missing.
    """
    path = _file_path(file_key)
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {file_key}")
    with open(path, "rb") as f:
        return f.read()


def file_exists(file_key: str) -> bool:
    try:
        return os.path.exists(_file_path(file_key))
    except ValueError:
        return False


def get_file_path(file_key: str) -> Optional[str]:
    path = _file_path(file_key)
    return path if os.path.exists(path) else None


def delete_file(file_key: str) -> bool:
    """
    Deletes a stored blob. Returns True if deleted.
    """
    path = _file_path(file_key)
    if os.path.exists(path):
        os.remove(path)
        return True
    return False


def delete_files(file_keys: List[str]) -> int:
    count = 0
    for key in file_keys or []:
        try:
            if delete_file(key):
                count += 1
        except ValueError:
            continue
    return count
