# Overview: Key normalization and CSV header aliasing shared by the import pipelines.

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Mapping


_WHITESPACE_RE = re.compile(r"\s+")
_HEADER_SEPARATORS_RE = re.compile(r"[_\-]+")


def normalize_value(value: str | None) -> str:
    return (value or "").strip()


def normalize_key(value: str | None) -> str:
    """
    Identity key for case/whitespace/Unicode-insensitive comparison.

    NFKC compose, collapse whitespace runs, trim, lower-case. Used for
    display names, store names, stock names and EANs.
    """
    text = unicodedata.normalize("NFKC", value or "")
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def normalize_header(value: str | None) -> str:
    """Header key: like normalize_key, but "display_name" == "Display Name" == "display-name"."""
    return normalize_key(_HEADER_SEPARATORS_RE.sub(" ", value or ""))


def get_field_value(row: Mapping[str, str | None], keys: Iterable[str]) -> str:
    """
    Return the first non-empty value whose header matches one of keys.

    Headers are compared after normalize_header, so uploads may use any
    casing/spacing. Returns "" when nothing matches.
    """
    expected = {normalize_header(key) for key in keys}
    for raw_key, raw_value in row.items():
        if raw_key is None or normalize_header(raw_key) not in expected:
            continue
        value = normalize_value(raw_value)
        if value:
            return value
    return ""


@dataclass(frozen=True)
class FieldSpec:
    name: str
    aliases: tuple[str, ...]


class FieldResolver:
    """
    Declared canonical fields for one import type.

    Each field lists the header aliases uploads are known to use, in
    priority order. resolve() returns {canonical_name: value}.
    """

    def __init__(self, fields: Iterable[FieldSpec]):
        self.fields = tuple(fields)

    def resolve(self, row: Mapping[str, str | None]) -> dict[str, str]:
        return {spec.name: get_field_value(row, spec.aliases) for spec in self.fields}

    def names(self) -> list[str]:
        return [spec.name for spec in self.fields]
