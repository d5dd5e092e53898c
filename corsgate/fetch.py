"""Typed HTTP fetch helper over requests.

A Fetcher owns a base URL, a table of named endpoints and one
requests.Session. It builds query strings, merges default and per-call
headers, unwraps JSON responses, streams downloads to disk and subscribes
to Server-Sent-Events streams.

Errors: non-2xx responses raise FetchError; transport errors
(requests.RequestException) propagate unchanged.
"""
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional
from urllib.parse import unquote, urlencode, urlparse

import requests

from corsgate.messages import HeaderMap, HeadersInit, merge_headers
from logging_config import get_logger

logger = get_logger("fetch")

_CHUNK_SIZE = 8192
_DEFAULT_FILENAME = "download"
_PART_SUFFIX = ".part"
_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*[^']*'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*"?([^";]+)"?', re.IGNORECASE)


class FetchError(Exception):
    """Raised when the server answers with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = "", body: str = "", url: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status_code} {reason}".strip() + (f" ({url})" if url else ""))


@dataclass(frozen=True)
class ApiEndpoint:
    """One entry of an endpoint table: HTTP method + path relative to base_url."""
    method: str
    endpoint: str


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


def append_url_parameters(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append url-encoded ``params`` (insertion order) to ``url``.

    The url is returned untouched when there are no params.
    """
    query = urlencode(list((params or {}).items()))
    return f"{url}?{query}" if query else url


def handle_response(response: requests.Response) -> Any:
    """Return the decoded JSON body, or raise FetchError for non-2xx.

    Empty bodies (e.g. 204) decode to None.
    """
    if not response.ok:
        raise FetchError(response.status_code, response.reason or "", response.text, response.url or "")
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def filename_from_response(response: requests.Response, url: str) -> str:
    """Pick a download filename from Content-Disposition or the URL path."""
    disposition = response.headers.get("Content-Disposition", "")
    name = ""
    match = _FILENAME_STAR_RE.search(disposition)
    if match:
        name = unquote(match.group(1).strip())
    else:
        match = _FILENAME_RE.search(disposition)
        if match:
            name = match.group(1).strip()
    if not name:
        name = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    return _safe_filename(name)


def _safe_filename(name: str) -> str:
    # Only a bare name is accepted; directory parts are dropped.
    name = os.path.basename(name.replace("\\", "/"))
    if name in ("", ".", ".."):
        return _DEFAULT_FILENAME
    return name


def parse_event_stream(lines: Iterable[Any]) -> Iterator[ServerSentEvent]:
    """Parse ``text/event-stream`` lines into ServerSentEvent objects.

    A blank line dispatches the pending event. Lines starting with ":" are
    comments. Several data lines are joined with "\\n". The last event id
    carries over to later events. A trailing event that is not terminated by
    a blank line is dropped.
    """
    event_type = ""
    data: list[str] = []
    last_id: Optional[str] = None
    retry: Optional[int] = None

    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        line = raw.rstrip("\r\n")

        if not line:
            if data:
                yield ServerSentEvent(
                    event=event_type or "message",
                    data="\n".join(data),
                    id=last_id,
                    retry=retry,
                )
            event_type = ""
            data = []
            retry = None
            continue

        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event_type = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            if "\0" not in value:
                last_id = value
        elif name == "retry":
            if value.isdigit():
                retry = int(value)


class EventStream:
    """An open Server-Sent-Events subscription.

    Iterate it to get parsed events, or call run() to dispatch every event
    to the handler registered for its event name. The underlying response
    is closed when run() returns or raises.
    """

    def __init__(
        self,
        response: requests.Response,
        handlers: Optional[Mapping[str, Callable[[ServerSentEvent], Any]]] = None,
        url: str = "",
    ):
        self.response = response
        self.handlers = dict(handlers or {})
        self.url = url
        # event-stream is always UTF-8
        if response.encoding is None:
            response.encoding = "utf-8"

    def __iter__(self) -> Iterator[ServerSentEvent]:
        return parse_event_stream(self.response.iter_lines(decode_unicode=True))

    def run(self) -> int:
        """Dispatch events until the server closes the stream.

        Returns:
            Number of events handed to a handler.
        """
        dispatched = 0
        logger.info("Stream opened: %s", self.url)
        try:
            for event in self:
                handler = self.handlers.get(event.event)
                if handler is None:
                    logger.debug("No handler for event %r, skipped", event.event)
                    continue
                handler(event)
                dispatched += 1
        except requests.RequestException:
            logger.exception("Stream error: %s", self.url)
            raise
        finally:
            self.close()
        logger.info("Stream closed: %s (%d events)", self.url, dispatched)
        return dispatched

    def close(self) -> None:
        self.response.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class Fetcher:
    """HTTP client bound to a base URL and a table of named endpoints.

    Args:
        base_url: Prefix joined verbatim with each endpoint path.
        endpoints: Mapping of logical name -> ApiEndpoint.
        default_headers: Headers sent with every request; per-call headers
            override them by name.
        timeout: Request timeout in seconds.
        session: Optional requests.Session (a new one is created otherwise).
    """

    def __init__(
        self,
        base_url: str,
        endpoints: Optional[Mapping[str, ApiEndpoint]] = None,
        default_headers: HeadersInit = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.endpoints = dict(endpoints or {})
        self.default_headers = HeaderMap(default_headers)
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _headers(self, headers: HeadersInit) -> HeaderMap:
        return merge_headers(self.default_headers, headers)

    def fetch(
        self,
        name: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        headers: HeadersInit = None,
        method: Optional[str] = None,
    ) -> Any:
        """Call the endpoint registered as ``name`` and return its JSON body.

        Raises:
            KeyError: ``name`` is not in the endpoint table.
            FetchError: The server answered with a non-2xx status.
        """
        endpoint = self.endpoints[name]
        url = append_url_parameters(self.base_url + endpoint.endpoint, params)
        http_method = (method or endpoint.method).upper()
        merged = self._headers(headers)

        data = None
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")
            if "Content-Type" not in merged:
                merged.set("Content-Type", "application/json")

        logger.debug("fetch %s %s", http_method, url)
        response = self.session.request(
            http_method,
            url,
            headers=merged.to_dict(),
            data=data,
            timeout=self.timeout,
        )
        return handle_response(response)

    def download(
        self,
        endpoint: str,
        dest_dir: str,
        filename: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: HeadersInit = None,
    ) -> str:
        """Stream ``base_url + endpoint`` into ``dest_dir`` and return the file path.

        The body is written to ``<name>.part`` and renamed once complete; an
        interrupted transfer removes the partial file and re-raises.
        """
        url = append_url_parameters(self.base_url + endpoint, params)
        with self.session.get(
            url,
            headers=self._headers(headers).to_dict(),
            stream=True,
            timeout=self.timeout,
        ) as response:
            if not response.ok:
                raise FetchError(response.status_code, response.reason or "", response.text, url)
            name = _safe_filename(filename) if filename else filename_from_response(response, url)
            os.makedirs(dest_dir, exist_ok=True)
            path = os.path.join(dest_dir, name)
            part_path = path + _PART_SUFFIX
            size = 0
            try:
                with open(part_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            size += len(chunk)
            except BaseException:
                logger.warning("Download interrupted: %s (%d bytes discarded)", url, size)
                if os.path.exists(part_path):
                    os.remove(part_path)
                raise
            os.replace(part_path, path)
        logger.info("Downloaded %s -> %s (%d bytes)", url, path, size)
        return path

    def subscribe(
        self,
        endpoint: str,
        handlers: Optional[Mapping[str, Callable[[ServerSentEvent], Any]]] = None,
        headers: HeadersInit = None,
    ) -> EventStream:
        """Open a Server-Sent-Events stream on ``base_url + endpoint``."""
        url = self.base_url + endpoint
        merged = self._headers(headers)
        merged.set("Accept", "text/event-stream")
        response = self.session.get(
            url,
            headers=merged.to_dict(),
            stream=True,
            timeout=(self.timeout, None),
        )
        if not response.ok:
            error = FetchError(response.status_code, response.reason or "", response.text, url)
            response.close()
            raise error
        return EventStream(response, handlers, url=url)

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
