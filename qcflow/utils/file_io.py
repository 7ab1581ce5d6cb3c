
from __future__ import annotations
import os, json, csv
from typing import Any, List, Dict

def ensure_dir(p: str):
    os.makedirs(p, exist_ok=True)

def write_text(p: str, s: str):
    ensure_dir(os.path.dirname(p) or ".")
    with open(p, "w", encoding="utf-8") as f:
        f.write(s)

def read_json(p: str) -> Any:
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)

def write_json(p: str, obj: Any, pretty: bool=True):
    ensure_dir(os.path.dirname(p) or ".")
    with open(p, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2 if pretty else None)

def write_csv(p: str, rows: List[Dict[str, Any]], fieldnames: List[str] | None = None):
    """Write dict rows; the header is ``fieldnames`` or the union of row keys in first-seen order."""
    ensure_dir(os.path.dirname(p) or ".")
    if fieldnames is None:
        fieldnames = []
        for r in rows:
            fieldnames.extend(k for k in r if k not in fieldnames)
    with open(p, "w", encoding="utf-8", newline="") as f:
        if not fieldnames:
            return
        w = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        w.writeheader()
        for r in rows:
            w.writerow(r)
