import re
from typing import Optional, Set


def safe_card_stem(name: str, used: Optional[Set[str]] = None) -> str:
    """
    Convert a guest name into a safe file stem.
    - Uses only letters/numbers/spaces/_/-
    - Collapses whitespace to underscores
    - Falls back to 'guest'
    - With `used`, repeats get a numeric suffix (John_Doe, John_Doe_2, ...)
    """
    raw = "" if name is None else str(name)
    safe = re.sub(r"[^A-Za-z0-9 _-]+", "", raw).strip()
    safe = re.sub(r"\s+", "_", safe)
    if not safe:
        safe = "guest"
    if used is not None:
        stem, n = safe, 1
        while stem.lower() in used:
            n += 1
            stem = f"{safe}_{n}"
        used.add(stem.lower())
        safe = stem
    return safe

