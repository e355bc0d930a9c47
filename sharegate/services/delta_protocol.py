"""Delta Sharing wire codec.

Encodes request bodies for the upstream server, decodes its NDJSON action
streams and paginated listings, and serializes actions back to NDJSON for
our own recipients. Decoding is lenient: a line that is not valid JSON, does
not validate, or carries no recognized action key is logged and skipped so
that one bad line never loses the rest of the stream.
"""

import base64
import binascii
import json
import logging
import time
from collections.abc import Iterable, Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from sharegate.schemas.delta_sharing import (
    ChangeAction,
    ChangesOptions,
    ChangesResult,
    Column,
    FileAction,
    Metadata,
    PaginatedList,
    Protocol,
    QueryOptions,
    QueryResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

NDJSON_MEDIA_TYPE = "application/x-ndjson"

DEFAULT_LIMIT_HINT = 1000
DEFAULT_MAX_RESULTS = 100
MAX_RESULTS_CAP = 1000
PAGE_TOKEN_TTL_SECONDS = 60 * 60

_CHANGE_KEYS = ("add", "remove", "cdf")


class InvalidQueryError(ValueError):
    """A query or changes request carries contradictory or missing selectors."""


# ---------------------------------------------------------------------------
# Request encoding
# ---------------------------------------------------------------------------


def encode_query(options: QueryOptions) -> dict[str, Any]:
    """Build the JSON body of a table query.

    Raises:
        InvalidQueryError: If both ``version`` and ``timestamp`` are given
    """
    if options.version is not None and options.timestamp is not None:
        raise InvalidQueryError("version and timestamp cannot both be specified")

    body: dict[str, Any] = {
        "limitHint": options.limit_hint if options.limit_hint is not None else DEFAULT_LIMIT_HINT,
        "predicateHints": list(options.predicate_hints or []),
    }
    if options.json_predicate_hints:
        body["jsonPredicateHints"] = options.json_predicate_hints
    if options.version is not None:
        body["version"] = options.version
    if options.timestamp:
        body["timestamp"] = options.timestamp
    return body


def encode_changes_query(options: ChangesOptions) -> dict[str, Any]:
    """Build the query parameters of a Change Data Feed request.

    Exactly one starting selector is required; only supplied selectors are
    included.

    Raises:
        InvalidQueryError: If neither or both starting selectors are given
    """
    has_version = options.starting_version is not None
    has_timestamp = bool(options.starting_timestamp)
    if has_version == has_timestamp:
        raise InvalidQueryError(
            "Exactly one of startingVersion or startingTimestamp must be specified"
        )
    if (
        options.ending_version is not None
        and options.starting_version is not None
        and options.ending_version < options.starting_version
    ):
        raise InvalidQueryError("endingVersion must not be less than startingVersion")

    return options.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Stream decoding
# ---------------------------------------------------------------------------


def _iter_json_lines(text: str) -> Iterator[dict[str, Any]]:
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed NDJSON line {lineno}: {e}")
            continue
        if not isinstance(obj, dict):
            logger.warning(f"Skipping NDJSON line {lineno}: expected an object")
            continue
        yield obj


def decode_action_stream(text: str) -> QueryResult:
    """Decode a query/metadata response into protocol, metadata and files."""
    result = QueryResult()
    for obj in _iter_json_lines(text):
        try:
            if "protocol" in obj:
                result.protocol = Protocol.model_validate(obj["protocol"])
            elif "metaData" in obj:
                result.metadata = Metadata.model_validate(obj["metaData"])
            elif "file" in obj:
                result.files.append(FileAction.model_validate(obj["file"]))
            else:
                logger.warning(f"Skipping unrecognized action: {sorted(obj)}")
        except ValidationError as e:
            logger.warning(f"Skipping invalid action {sorted(obj)}: {e.error_count()} error(s)")
    return result


def decode_change_stream(text: str) -> ChangesResult:
    """Decode a Change Data Feed response into protocol, metadata and actions."""
    result = ChangesResult()
    for obj in _iter_json_lines(text):
        try:
            if "protocol" in obj:
                result.protocol = Protocol.model_validate(obj["protocol"])
            elif "metaData" in obj:
                result.metadata = Metadata.model_validate(obj["metaData"])
            else:
                key = next((k for k in _CHANGE_KEYS if k in obj), None)
                if key is None:
                    logger.warning(f"Skipping unrecognized change action: {sorted(obj)}")
                    continue
                result.actions.append(
                    ChangeAction(change_type=key, file=FileAction.model_validate(obj[key]))
                )
        except ValidationError as e:
            logger.warning(f"Skipping invalid change action {sorted(obj)}: {e.error_count()} error(s)")
    return result


def decode_paginated_list(payload: dict[str, Any], item_model: type[T]) -> PaginatedList[T]:
    """Decode a ``{items, nextPageToken}`` listing, skipping invalid items."""
    items: list[T] = []
    for raw in payload.get("items") or []:
        try:
            items.append(item_model.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping invalid {item_model.__name__}: {e.error_count()} error(s)")
    return PaginatedList[item_model](items=items, next_page_token=payload.get("nextPageToken") or None)


# ---------------------------------------------------------------------------
# Stream encoding
# ---------------------------------------------------------------------------


def action_line(key: str, body: BaseModel) -> str:
    return json.dumps({key: body.to_wire()}, separators=(",", ":")) + "\n"


def encode_action_stream(
    protocol: Protocol | None,
    metadata: Metadata | None,
    actions: Iterable[FileAction | ChangeAction] = (),
) -> Iterator[str]:
    """Serialize actions as NDJSON lines, protocol and metadata first."""
    if protocol is not None:
        yield action_line("protocol", protocol)
    if metadata is not None:
        yield action_line("metaData", metadata)
    for action in actions:
        if isinstance(action, ChangeAction):
            yield json.dumps(action.to_wire(), separators=(",", ":")) + "\n"
        else:
            yield action_line("file", action)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def encode_page_token(offset: int) -> str:
    payload = json.dumps({"offset": offset, "timestamp": int(time.time() * 1000)})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_page_token(token: str) -> int | None:
    """Offset stored in a page token, or None if invalid or older than an hour."""
    try:
        parsed = json.loads(base64.b64decode(token, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
        return None

    if not isinstance(parsed, dict):
        return None
    offset = parsed.get("offset")
    issued = parsed.get("timestamp")
    if type(offset) is not int or type(issued) is not int or offset < 0:
        return None

    if time.time() * 1000 - issued > PAGE_TOKEN_TTL_SECONDS * 1000:
        return None
    return offset


def clamp_max_results(max_results: int | None) -> int:
    if max_results is None or max_results <= 0:
        return DEFAULT_MAX_RESULTS
    return min(max_results, MAX_RESULTS_CAP)


def paginate(
    items: list[T],
    max_results: int | None = None,
    page_token: str | None = None,
) -> PaginatedList[T]:
    """Slice a full listing into one page.

    An invalid or expired token restarts from the beginning.
    """
    size = clamp_max_results(max_results)
    offset = 0
    if page_token:
        offset = decode_page_token(page_token) or 0

    page = items[offset : offset + size]
    next_token = encode_page_token(offset + size) if offset + size < len(items) else None
    return PaginatedList(items=page, next_page_token=next_token)


# ---------------------------------------------------------------------------
# Schema strings
# ---------------------------------------------------------------------------


def parse_schema_string(schema_string: str | None) -> list[Column]:
    """Turn a Spark struct schema JSON into columns.

    Nested types are rendered as compact JSON. Anything unparseable yields an
    empty list.
    """
    if not schema_string:
        return []
    try:
        schema = json.loads(schema_string)
    except json.JSONDecodeError:
        logger.warning("Could not parse table schema string")
        return []

    fields = schema.get("fields") if isinstance(schema, dict) else None
    if not isinstance(fields, list):
        return []

    columns = []
    for field in fields:
        if not isinstance(field, dict) or "name" not in field:
            continue
        field_type = field.get("type", "string")
        if not isinstance(field_type, str):
            field_type = json.dumps(field_type, separators=(",", ":"))
        columns.append(
            Column(name=field["name"], type=field_type, nullable=field.get("nullable", True))
        )
    return columns
