"""HTTP message model shared by the CORS gate, the server adapter and the fetcher.

HeaderMap is the one canonical header representation: an ordered list of
(name, value) pairs with case-insensitive name lookup. Request and Response
are plain mutable dataclasses; the gate mutates a Response in place and hands
back the same object.

No external dependencies (stdlib only).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Union

HeadersInit = Union["HeaderMap", Mapping[str, str], Iterable[tuple[str, str]], None]


class HeaderMap:
    """Ordered, case-insensitive multi-valued header collection.

    The spelling of a name is the one it was first added with. ``set``
    replaces every value for a name while keeping the position of its
    first occurrence.
    """

    def __init__(self, init: HeadersInit = None):
        self._items: list[tuple[str, str]] = []
        if init is None:
            return
        if isinstance(init, HeaderMap):
            pairs = init.items()
        elif isinstance(init, Mapping):
            pairs = init.items()
        else:
            pairs = init
        for name, value in pairs:
            self.append(name, value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return all values for ``name`` joined with ", ", or ``default``."""
        values = self.get_all(name)
        if not values:
            return default
        return ", ".join(values)

    def get_all(self, name: str) -> list[str]:
        key = name.lower()
        return [v for n, v in self._items if n.lower() == key]

    def set(self, name: str, value: str) -> None:
        key = name.lower()
        value = str(value)
        result = []
        replaced = False
        for n, v in self._items:
            if n.lower() != key:
                result.append((n, v))
            elif not replaced:
                result.append((n, value))
                replaced = True
        if not replaced:
            result.append((name, value))
        self._items = result

    def append(self, name: str, value: str) -> None:
        key = name.lower()
        for n, _ in self._items:
            if n.lower() == key:
                name = n
                break
        self._items.append((name, str(value)))

    def delete(self, name: str) -> None:
        key = name.lower()
        self._items = [(n, v) for n, v in self._items if n.lower() != key]

    def names(self) -> list[str]:
        """Distinct header names in first-seen order."""
        seen = []
        lowered = set()
        for n, _ in self._items:
            if n.lower() not in lowered:
                lowered.add(n.lower())
                seen.append(n)
        return seen

    def items(self) -> list[tuple[str, str]]:
        return list(self._items)

    def to_dict(self) -> dict[str, str]:
        """Flatten to a plain dict (multi-values joined), e.g. for requests."""
        return {n: self.get(n) for n in self.names()}

    def copy(self) -> "HeaderMap":
        return HeaderMap(self)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        key = name.lower()
        return any(n.lower() == key for n, _ in self._items)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __setitem__(self, name: str, value: str) -> None:
        self.set(name, value)

    def __delitem__(self, name: str) -> None:
        if name not in self:
            raise KeyError(name)
        self.delete(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self.names())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeaderMap):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"HeaderMap({self._items!r})"


def merge_headers(base: HeadersInit, override: HeadersInit) -> HeaderMap:
    """Merge two header collections into a new HeaderMap.

    Every name present in ``override`` replaces all same-named entries of
    ``base`` (case-insensitive); names only in ``override`` are appended in
    their order. Neither input is modified.
    """
    merged = base.copy() if isinstance(base, HeaderMap) else HeaderMap(base)
    extra = HeaderMap(override)
    for name in extra.names():
        values = extra.get_all(name)
        merged.set(name, values[0])
        for value in values[1:]:
            merged.append(name, value)
    return merged


@dataclass
class Request:
    """Incoming (or outgoing) HTTP request."""
    method: str = "GET"
    url: str = "/"
    headers: HeaderMap = field(default_factory=HeaderMap)
    body: Optional[bytes] = None

    def __post_init__(self):
        if not isinstance(self.headers, HeaderMap):
            self.headers = HeaderMap(self.headers)


@dataclass
class Response:
    """HTTP response. Status defaults to 200."""
    status: int = 200
    headers: HeaderMap = field(default_factory=HeaderMap)
    body: Optional[bytes] = None

    def __post_init__(self):
        if not isinstance(self.headers, HeaderMap):
            self.headers = HeaderMap(self.headers)

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        body = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        headers = HeaderMap({"Content-Type": "application/json; charset=utf-8"})
        return cls(status=status, headers=headers, body=body)


@dataclass
class RequestContext:
    """Per-call bundle handed to a middleware.

    Attributes:
        request: The incoming request.
        next: Downstream handler, called with this same context.
        response: Pre-existing response the downstream handler may reuse.
    """
    request: Request
    next: Callable[["RequestContext"], Any]
    response: Optional[Response] = None
