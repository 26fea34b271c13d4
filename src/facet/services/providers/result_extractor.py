"""Normalize provider status payloads into a single outcome.

Providers return structurally incompatible JSON envelopes, so payloads are treated as
generic trees and walked with path expressions instead of per-provider typed parsing.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Sequence, Union

PathExpr = Union[str, Sequence[Union[str, int]]]

DEFAULT_FAILURE_MESSAGE = "Job failed"

_INDEX_PATTERN = re.compile(r"\[(\d+)\]")

# Keys searched inside a decoded resultJson envelope, in order
_RESULT_JSON_KEYS: tuple[PathExpr, ...] = (
    "resultUrls.0",
    "images.0",
    "output.images.0",
    "image_url",
    "imageUrl",
)

# Flux Kontext style: data.response.resultImageUrl
_FLUX_FALLBACK_PATHS: tuple[PathExpr, ...] = (
    "data.response.resultImageUrl",
    "response.resultImageUrl",
    "resultImageUrl",
)

# Market model style: output.images[0] envelopes
_MARKET_FALLBACK_PATHS: tuple[PathExpr, ...] = (
    "data.output.images.0",
    "data.images.0",
    "data.imageUrl",
    "data.image_url",
    "output.images.0",
    "images.0",
)

_RESULT_JSON_FALLBACK_PATHS: tuple[PathExpr, ...] = ("data.resultJson", "resultJson")

_ERROR_MESSAGE_PATHS: tuple[PathExpr, ...] = (
    "data.errorMessage",
    "data.error",
    "errorMessage",
    "error",
)


@dataclass(frozen=True)
class Pending:
    """Provider has not produced a result yet."""


@dataclass(frozen=True)
class Success:
    """Provider produced a usable result URL."""

    url: str


@dataclass(frozen=True)
class Failed:
    """Provider reported the task as failed."""

    reason: str


Outcome = Union[Pending, Success, Failed]


def parse_path(path: PathExpr) -> list[str]:
    """Split a path expression into segments.

    Accepts "data.output.images.0", "data.output.images[0]" or a list of segments.
    """
    if isinstance(path, str):
        normalized = _INDEX_PATTERN.sub(r".\1", path)
        return [segment for segment in normalized.split(".") if segment]
    return [str(segment) for segment in path]


def get_path(payload: Any, path: PathExpr) -> Any:
    """Walk a payload along a path. Missing segments yield None, never an exception."""
    current = payload
    for segment in parse_path(path):
        if current is None:
            return None
        if isinstance(current, list):
            if not segment.isdigit():
                return None
            index = int(segment)
            current = current[index] if index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(segment)
        else:
            return None
    return current


def _as_url(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _decode_result_json(value: Any) -> Any:
    """Decode a JSON document nested inside a string field (already-decoded maps pass through)."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def _first_url(payload: Any, paths: Sequence[PathExpr]) -> str | None:
    for path in paths:
        url = _as_url(get_path(payload, path))
        if url:
            return url
    return None


def _url_from_result_json(value: Any, extra_keys: Sequence[PathExpr] = ()) -> str | None:
    decoded = _decode_result_json(value)
    if not isinstance(decoded, dict):
        return None
    return _first_url(decoded, (*_RESULT_JSON_KEYS, *extra_keys))


def extract_result_url(payload: Any, paths: Sequence[PathExpr] | None = None) -> str | None:
    """Resolve the result URL from a provider payload.

    Configured paths are tried first, in order. A path containing a segment named
    ``resultJson`` is decoded as JSON-in-a-string and searched for the usual URL keys.
    When no configured path yields a URL the built-in fallback cascade covering the
    flux-style and market-style envelopes is used. First non-empty hit wins.
    """
    for path in paths or ():
        value = get_path(payload, path)
        if "resultJson" in parse_path(path):
            url = _url_from_result_json(value)
        else:
            url = _as_url(value)
        if url:
            return url

    url = _first_url(payload, _FLUX_FALLBACK_PATHS)
    if url:
        return url

    url = _first_url(payload, _MARKET_FALLBACK_PATHS)
    if url:
        return url

    for path in _RESULT_JSON_FALLBACK_PATHS:
        url = _url_from_result_json(get_path(payload, path), extra_keys=("result",))
        if url:
            return url

    return None


def check_predicate(payload: Any, check: dict | None) -> bool:
    """Evaluate a ``{path, value}`` or ``{path, values: [...]}`` equality predicate."""
    if not check or not check.get("path"):
        return False
    value = get_path(payload, check["path"])
    if check.get("values") is not None:
        return value in check["values"]
    if "value" not in check:
        return False
    return value == check["value"]


def extract_error_message(payload: Any) -> str:
    for path in _ERROR_MESSAGE_PATHS:
        value = get_path(payload, path)
        if value:
            return value if isinstance(value, str) else json.dumps(value)
    return DEFAULT_FAILURE_MESSAGE


def extract_task_id(payload: Any, task_id_path: PathExpr | None = None) -> str | None:
    """Find the provider task id: registry path first, then the well-known fields."""
    candidates: list[PathExpr] = [task_id_path] if task_id_path else []
    candidates += ["data.taskId", "taskId", "data.id", "id"]
    for path in candidates:
        value = get_path(payload, path)
        if value not in (None, ""):
            return str(value)
    return None


def classify(payload: Any, config) -> Outcome:
    """Classify a raw provider status payload using a model's registry entry.

    A payload carrying a result URL counts as Success even when the documented success
    flag is absent, as long as the failure predicate does not match.

    Args:
        payload: Decoded JSON body from the provider status endpoint
        config: Registry entry (ModelConfig) for the job's model

    Returns:
        Pending, Success(url) or Failed(reason)
    """
    is_success = check_predicate(payload, config.success_check)
    is_failed = check_predicate(payload, config.failure_check)
    result_url = extract_result_url(payload, config.result_url_paths)

    if is_success or (result_url and not is_failed):
        if result_url:
            return Success(result_url)
        # Success flag without a URL; the result usually shows up on a later poll
        return Pending()

    if is_failed:
        return Failed(extract_error_message(payload))

    return Pending()
