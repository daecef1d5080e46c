"""
Field access for caller-supplied raw records.

Raw rows arrive either as mappings (decoded JSON, ORM row dicts) keyed in
camelCase as persisted, or as snake_case mappings and plain objects built
by Python callers. read_field() accepts all of them.
"""

from typing import Any, List, Mapping


def read_field(record: Any, *names: str) -> Any:
    """
    Return the first non-None value found under any of the given names.

    Mappings are looked up by key, other objects by attribute.
    """
    if record is None:
        return None
    for name in names:
        if isinstance(record, Mapping):
            value = record.get(name)
        else:
            value = getattr(record, name, None)
        if value is not None:
            return value
    return None


def as_list(value: Any) -> List[Any]:
    """Treat anything that is not a list or tuple as empty."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def as_metadata(value: Any) -> Any:
    """Passthrough metadata must be a mapping, otherwise it is dropped."""
    if isinstance(value, Mapping):
        return dict(value)
    return None


def is_record(value: Any) -> bool:
    """True for anything read_field() can meaningfully read."""
    return value is not None and not isinstance(value, (str, bytes, int, float, bool))
