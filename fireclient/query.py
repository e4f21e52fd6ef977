"""Query parameter builders for database requests.

Each builder returns a small dict; pass any number of them to a request
method and they are merged in order::

    await ref.get(order_by("height"), start_at(3), limit_to_first(10))
"""

import json
from typing import Any

from fireclient.errors import FirebaseError

QueryParams = dict[str, str]


def _json_param(name: str, value: Any) -> QueryParams:
    try:
        return {name: json.dumps(value, separators=(",", ":"))}
    except (TypeError, ValueError) as e:
        raise FirebaseError(f"could not marshal query option: {e}") from e


def _limit_param(name: str, n: int) -> QueryParams:
    if n < 0:
        raise FirebaseError(f"{name} must be non-negative, got {n}")
    return {name: str(int(n))}


def shallow() -> QueryParams:
    """Return only the keys at the ref, with children truncated to true."""
    return {"shallow": "true"}


def print_pretty() -> QueryParams:
    return {"print": "pretty"}


def order_by(field: str) -> QueryParams:
    return _json_param("orderBy", field)


def equal_to(value: Any) -> QueryParams:
    return _json_param("equalTo", value)


def start_at(value: Any) -> QueryParams:
    return _json_param("startAt", value)


def end_at(value: Any) -> QueryParams:
    return _json_param("endAt", value)


def limit_to_first(n: int) -> QueryParams:
    return _limit_param("limitToFirst", n)


def limit_to_last(n: int) -> QueryParams:
    return _limit_param("limitToLast", n)


def merge_params(*params: QueryParams | None) -> QueryParams:
    """Merge query dicts left to right; later values win."""
    merged: QueryParams = {}
    for p in params:
        if p:
            merged.update(p)
    return merged
