"""
Small shared utilities.
"""
from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Generator

_OBJECT_URI_RE = re.compile(r"^/gdc/md/([^/\s]+)/obj/([^/\s]+)$")


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def workspace_id_from_uri(uri: str) -> str:
    """Extract the workspace id from an object URI like ``/gdc/md/<ws>/obj/<id>``."""
    m = _OBJECT_URI_RE.match(uri)
    if not m:
        raise ValueError(f"Wrong object URI format: '{uri}'")
    return m.group(1)
