"""Web search and fetch tools."""

from __future__ import annotations

import json
from typing import cast
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

import html2markdown

from tern.errors import ToolExecutionError
from tern.tools.inputs import WebFetchInput, WebSearchInput
from tern.tools.schema import ToolSchema

BRAVE_SEARCH_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"
REQUEST_TIMEOUT_SECONDS = 20
MAX_FETCH_BYTES = 1_000_000
USER_AGENT = "tern-web-tools/1.0"
ALLOWED_SCHEMES = frozenset({"http", "https"})

WEB_SEARCH = ToolSchema("web_search", "Search the web and return titles, URLs and snippets", WebSearchInput)
WEB_FETCH = ToolSchema("web_fetch", "Fetch a URL and convert the HTML body to markdown", WebFetchInput)


def web_fetch(params: WebFetchInput) -> str:
    url = normalize_url(params.url)
    if not url:
        raise ToolExecutionError("invalid url")

    request = urllib_request.Request(  # noqa: S310 - scheme is validated by normalize_url.
        url,
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
    )
    try:
        with urllib_request.urlopen(request, timeout=REQUEST_TIMEOUT_SECONDS) as response:  # noqa: S310
            body_bytes = response.read(MAX_FETCH_BYTES + 1)
            truncated = len(body_bytes) > MAX_FETCH_BYTES
            if truncated:
                body_bytes = body_bytes[:MAX_FETCH_BYTES]
            charset = response.headers.get_content_charset() or "utf-8"
    except OSError as exc:
        raise ToolExecutionError(str(exc)) from exc

    html = body_bytes.decode(charset, errors="replace")
    markdown = html2markdown.convert(html).strip()
    if not markdown:
        raise ToolExecutionError("empty response body")
    if truncated:
        return f"{markdown}\n\n[truncated: response exceeded byte limit]"
    return cast(str, markdown)


class WebSearchTool:
    """Brave Search backed web search."""

    def __init__(self, api_key: str | None) -> None:
        self.api_key = api_key

    def schema(self) -> ToolSchema:
        return WEB_SEARCH

    def invoke(self, params: WebSearchInput) -> str:
        if not self.api_key:
            raise ToolExecutionError("web search api key is not configured (TERN_WEB_SEARCH_API_KEY)")

        query = urllib_parse.urlencode({"q": params.query, "count": params.count})
        request = urllib_request.Request(  # noqa: S310 - fixed https endpoint.
            f"{BRAVE_SEARCH_ENDPOINT}?{query}",
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
                "User-Agent": USER_AGENT,
            },
        )
        try:
            with urllib_request.urlopen(request, timeout=REQUEST_TIMEOUT_SECONDS) as response:  # noqa: S310
                response_body = response.read().decode("utf-8", errors="replace")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace").strip()
            raise ToolExecutionError(f"http {exc.code}: {detail}" if detail else f"http {exc.code}") from exc
        except OSError as exc:
            raise ToolExecutionError(str(exc)) from exc

        try:
            data = json.loads(response_body)
        except json.JSONDecodeError as exc:
            raise ToolExecutionError(f"invalid json response: {exc!s}") from exc

        results = data.get("web", {}).get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not results:
            return "none"
        return format_search_results(results)


def normalize_url(raw_url: str) -> str | None:
    """Return an http(s) URL for ``raw_url``, assuming https when no scheme is given."""
    candidate = raw_url.strip()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parts = urllib_parse.urlsplit(candidate)
    if parts.scheme not in ALLOWED_SCHEMES or not parts.hostname:
        return None
    return candidate


def format_search_results(results: list[object]) -> str:
    entries: list[str] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        block = [f"{len(entries) + 1}. {item.get('title') or '(untitled)'}"]
        block.extend(f"   {item[key]}" for key in ("url", "description") if item.get(key))
        entries.append("\n".join(block))
    return "\n".join(entries) or "none"
