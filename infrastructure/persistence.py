# infrastructure/persistence.py

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List


def _replace_file(path: str, data: bytes) -> None:
    """
    Write data next to path under a temp name, fsync, then os.replace.
    Readers see the old file or the new one, never a partial write.
    """
    target = os.path.abspath(path)
    target_dir = os.path.dirname(target) or "."
    os.makedirs(target_dir, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=target_dir)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def to_jsonable(x: Any) -> Any:
    """
    Reduce engine records (frozen dataclasses, enums, dicts of portfolios)
    to JSON primitives. Enums are written by value.
    """
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, Enum):
        return x.value
    if is_dataclass(x) and not isinstance(x, type):
        return {k: to_jsonable(v) for k, v in asdict(x).items()}
    if isinstance(x, dict):
        return {str(k): to_jsonable(v) for k, v in x.items()}
    if isinstance(x, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in x]
    raise TypeError(f"cannot serialize {type(x).__name__}")


def atomic_write_json(path: str, obj: Any) -> None:
    payload = json.dumps(to_jsonable(obj), ensure_ascii=False, indent=2, sort_keys=True)
    _replace_file(path, payload.encode("utf-8"))


def read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def atomic_write_jsonl(path: str, records: Iterable[Any]) -> int:
    """Write one JSON object per line. Returns the number of records written."""
    lines = [json.dumps(to_jsonable(r), ensure_ascii=False, separators=(",", ":")) for r in records]
    data = "".join(line + "\n" for line in lines)
    _replace_file(path, data.encode("utf-8"))
    return len(lines)


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if line:
                out.append(json.loads(line))
    return out
