"""Pagination query encoding.

Maps a structured listing request (page, page size, sort, search, filters)
onto the portal's wire convention:

    page=1&size=20&sort=name&sort=-createdAt&search=bob&filter[status]=active

Absent fields are omitted; list values repeat their parameter once per
element; None and empty-string filter values are dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import parse_qsl, urlencode

Scalar = Union[str, int, float, bool]
FilterValue = Union[Scalar, None, Sequence[Union[Scalar, None]]]
QueryParams = List[Tuple[str, str]]


@dataclass
class PageOptions:
    """Structured description of a listing request."""
    page: Optional[int] = None
    page_size: Optional[int] = None
    sort: Union[str, Sequence[str], None] = None
    search: Optional[str] = None
    filter: Dict[str, FilterValue] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "PageOptions":
        """Accepts camelCase ('pageSize') or snake_case ('page_size') keys."""
        return cls(
            page=options.get("page"),
            page_size=options.get("page_size", options.get("pageSize")),
            sort=options.get("sort"),
            search=options.get("search"),
            filter=dict(options.get("filter") or {}),
        )


def _render(value: Scalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def build_query_params(options: Union[PageOptions, Mapping[str, Any]]) -> QueryParams:
    """Builds the ordered (key, value) pairs for a listing request."""
    opts = options if isinstance(options, PageOptions) else PageOptions.from_mapping(options)
    params: QueryParams = []

    if opts.page is not None:
        params.append(("page", _render(opts.page)))
    if opts.page_size is not None:
        params.append(("size", _render(opts.page_size)))

    if isinstance(opts.sort, str):
        if opts.sort:
            params.append(("sort", opts.sort))
    elif opts.sort:
        params.extend(("sort", entry) for entry in opts.sort if entry)

    if not _is_blank(opts.search):
        params.append(("search", str(opts.search)))

    for key, value in opts.filter.items():
        name = f"filter[{key}]"
        if isinstance(value, (list, tuple, set, frozenset)):
            params.extend((name, _render(v)) for v in value if not _is_blank(v))
        elif not _is_blank(value):
            params.append((name, _render(value)))

    return params


def build_query(options: Union[PageOptions, Mapping[str, Any]]) -> str:
    """Encodes a listing request as a query string (without the leading '?')."""
    # Brackets stay literal so servers see filter[key] rather than filter%5Bkey%5D
    return urlencode(build_query_params(options), safe="[]")


def parse_query(query: str) -> QueryParams:
    """Inverse of build_query, for inspection and tests."""
    return parse_qsl(query, keep_blank_values=True)


def with_query(endpoint: str, params: Union[QueryParams, Mapping[str, Any], None]) -> str:
    """Appends query parameters to an endpoint path.

    Used instead of httpx's own params encoding, which would escape the
    brackets in filter[key].
    """
    if not params:
        return endpoint
    pairs = params.items() if isinstance(params, Mapping) else params
    encoded: QueryParams = []
    for key, value in pairs:
        if isinstance(value, (list, tuple)):
            encoded.extend((key, _render(v)) for v in value if v is not None)
        elif value is not None:
            encoded.append((key, _render(value)))
    if not encoded:
        return endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{endpoint}{separator}{urlencode(encoded, safe='[]')}"
