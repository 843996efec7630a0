"""Content fingerprinting for deduplication.

A fingerprint is the SHA-256 digest of a canonical JSON rendering of the
semantically relevant part of a payload. Relevant fields are declared up
front as selector paths; volatile fields such as device timestamps and
nonces are either left out of the selection or explicitly excluded.

Selector syntax:
    deviceId                dotted keys into objects
    result.stepId
    readings[0].value       bracketed list indices
    readings.0.value        numeric segments also index lists
"""

import dataclasses
import hashlib
import json
import re
from collections.abc import Mapping, Sequence
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from tollgate.admission.exceptions import ConfigurationError, ExtractionError

PathSegment = str | int

_PART_PATTERN = re.compile(r"([^\[\]]*)((?:\[\d+\])*)")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")

# Selector reported when the payload itself cannot be normalized
PAYLOAD_ROOT = "<payload>"


def parse_selector(selector: str) -> tuple[PathSegment, ...]:
    """Parse a selector into path segments.

    Raises:
        ConfigurationError: If the selector is empty or malformed
    """
    if not selector or selector.strip() != selector:
        raise ConfigurationError(f"Invalid field selector: {selector!r}")

    path: list[PathSegment] = []
    for part in selector.split("."):
        match = _PART_PATTERN.fullmatch(part)
        if not part or match is None:
            raise ConfigurationError(f"Invalid field selector: {selector!r}")
        name, indexes = match.group(1), match.group(2)
        if name:
            path.append(name)
        elif not indexes:
            raise ConfigurationError(f"Invalid field selector: {selector!r}")
        path.extend(int(index) for index in _INDEX_PATTERN.findall(indexes))
    return tuple(path)


def normalize(value: Any) -> Any:
    """Reduce a payload to a JSON-compatible key/value tree.

    Raises:
        ExtractionError: If the payload contains a value with no canonical form
    """
    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode="json"))
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return normalize(dataclasses.asdict(value))
    if isinstance(value, Mapping):
        return {str(key): normalize(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((normalize(item) for item in value), key=canonical_json)
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    raise ExtractionError(PAYLOAD_ROOT, f"unsupported value type {type(value).__name__}")


def canonical_json(value: Any) -> str:
    """Render a normalized tree as order-insensitive compact JSON."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def resolve(tree: Any, path: tuple[PathSegment, ...], selector: str) -> Any:
    """Resolve a parsed selector against a normalized tree.

    Raises:
        ExtractionError: If any segment is missing or has the wrong shape
    """
    node = tree
    for segment in path:
        if isinstance(node, dict):
            if isinstance(segment, int):
                raise ExtractionError(selector, f"index [{segment}] applied to an object")
            if segment not in node:
                raise ExtractionError(selector, f"missing field '{segment}'")
            node = node[segment]
        elif isinstance(node, list):
            if isinstance(segment, str):
                if not segment.isdigit():
                    raise ExtractionError(selector, f"field '{segment}' applied to a list")
                segment = int(segment)
            if segment >= len(node):
                raise ExtractionError(selector, f"index {segment} out of range")
            node = node[segment]
        else:
            raise ExtractionError(
                selector, f"cannot descend into {type(node).__name__}"
            )
    return node


class FingerprintExtractor:
    """Computes deterministic fingerprints over declared payload fields.

    With ``selectors`` the digest covers exactly those fields, keyed by
    selector, so payload key order and undeclared fields never matter.
    Without selectors the whole normalized payload is digested, minus any
    ``exclude`` paths.
    """

    def __init__(
        self,
        selectors: Sequence[str] | None = None,
        exclude: Sequence[str] | None = None,
    ) -> None:
        """Parse and validate selectors.

        Args:
            selectors: Fields that define message identity
            exclude: Volatile fields dropped from a whole-payload digest

        Raises:
            ConfigurationError: If a selector is malformed, or both
                selectors and exclusions are given
        """
        if selectors and exclude:
            raise ConfigurationError(
                "Field selectors and exclusions are mutually exclusive"
            )
        self._selectors = {s: parse_selector(s) for s in selectors or ()}
        self._exclude = [parse_selector(s) for s in exclude or ()]
        for path in self._exclude:
            if not isinstance(path[-1], str) or path[-1].isdigit():
                raise ConfigurationError("Excluded fields must name object keys")

    @property
    def selectors(self) -> list[str]:
        return sorted(self._selectors)

    def extract(self, payload: Any) -> Any:
        """Return the normalized document that the fingerprint covers."""
        tree = normalize(payload)
        if self._selectors:
            return {
                selector: resolve(tree, path, selector)
                for selector, path in self._selectors.items()
            }
        for path in self._exclude:
            self._drop(tree, path)
        return tree

    def fingerprint(self, payload: Any) -> str:
        """Compute the hex SHA-256 fingerprint of a payload.

        Raises:
            ExtractionError: If a declared selector does not resolve
        """
        document = canonical_json(self.extract(payload))
        return hashlib.sha256(document.encode("utf-8")).hexdigest()

    def _drop(self, tree: Any, path: tuple[PathSegment, ...]) -> None:
        # Absent volatile fields are not an error
        node = tree
        for segment in path[:-1]:
            if isinstance(node, dict) and isinstance(segment, str) and segment in node:
                node = node[segment]
            elif isinstance(node, list) and str(segment).isdigit() and int(segment) < len(node):
                node = node[int(segment)]
            else:
                return
        if isinstance(node, dict):
            node.pop(path[-1], None)


def compute_fingerprint(
    payload: Any,
    selectors: Sequence[str] | None = None,
    exclude: Sequence[str] | None = None,
) -> str:
    """Fingerprint a payload without keeping an extractor around."""
    return FingerprintExtractor(selectors, exclude).fingerprint(payload)
