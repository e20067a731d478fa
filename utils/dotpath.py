from typing import Any, Mapping, Sequence


class _Missing:
    """Sentinel for a path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def resolve_path(data: Any, path: str) -> Any:
    """
    Looks up a dot-notation path ("customer.orders.0.total") in nested
    mappings, sequences and objects. Returns MISSING if any segment is absent.
    """
    if not path:
        return MISSING

    current = data
    for part in path.strip().split("."):
        if current is None or current is MISSING:
            return MISSING

        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
                continue
            return MISSING

        if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(part)]
                continue
            except (ValueError, IndexError):
                return MISSING

        if not part.startswith("_") and hasattr(current, part):
            current = getattr(current, part)
            continue

        return MISSING

    return current
