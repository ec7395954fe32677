from typing import Any, Callable, Dict, List

from ..errors import EmptyResultError, FormatError

_REGISTRY: Dict[str, Callable] = {}


def feed(name: str):
    def deco(fn):
        _REGISTRY[name] = fn
        return fn
    return deco


def get_adapter(name: str) -> Callable:
    return _REGISTRY[name]


def all_adapters() -> List[str]:
    return list(_REGISTRY.keys())


def flatten_numeric_keyed(data: Any, limit: int, id_field: str = "id") -> List[Dict]:
    """abuse.ch exports: ``{"3722626": [{...}], ...}``; the key is stamped into each record."""
    if not isinstance(data, dict):
        raise FormatError(f"expected an object keyed by id, got {type(data).__name__}")
    records: List[Dict] = []
    for key, entries in data.items():
        for entry in entries if isinstance(entries, list) else [entries]:
            if isinstance(entry, dict):
                records.append({id_field: key, **entry})
            if len(records) >= limit:
                return records
    return records


def check_query_status(payload: Any, feed_name: str) -> Dict:
    """abuse.ch query APIs answer ``{"query_status": ...}``; anything but ok/no_results is malformed."""
    if not isinstance(payload, dict):
        raise FormatError(f"{feed_name}: expected an object, got {type(payload).__name__}")
    status = payload.get("query_status")
    if status == "no_results":
        raise EmptyResultError(f"{feed_name}: no results")
    if status != "ok":
        raise FormatError(f"{feed_name}: unexpected query_status {status!r}")
    return payload


def text_lines(text: str) -> List[str]:
    """Non-empty lines, ``#`` comments dropped."""
    return [line.strip() for line in text.splitlines() if line.strip() and not line.strip().startswith("#")]


from . import (  # noqa: E402,F401  register feeds
    blocklist_de,
    feodo,
    ipsum,
    malwarebazaar,
    openphish,
    phishtank,
    ransomwatch,
    sslbl,
    threatfox,
    urlhaus,
)
