"""Lightweight SQL text scanning.

Not a parser: these helpers only find what the describe pipeline needs
(projected names, CTE names, FROM/JOIN relations) and never raise on
malformed input.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Set, Tuple

_SELECT_RE = re.compile(r"\bselect\b", re.IGNORECASE)
_WITH_RE = re.compile(r"\bwith\b", re.IGNORECASE)
_AS_RE = re.compile(r"\bas\b", re.IGNORECASE)
_SELECT_LIST_RE = re.compile(r"\bselect\b(.*?)\bfrom\b", re.IGNORECASE | re.DOTALL)

_IDENT = r'(?:\[[^\]]+\]|"[^"]+"|`[^`]+`|\w+)'

_PROJECTION_PATTERNS = [
    re.compile(r"\bas\s+(" + _IDENT + r")\s*$", re.IGNORECASE | re.DOTALL),
    re.compile(r"(" + _IDENT + r")\s*$"),
    re.compile(r"^\s*" + _IDENT + r"\.(" + _IDENT + r")\s*$"),
]

_RELATION_RE = re.compile(
    r"\b(?:from|join)\s+(" + _IDENT + r"(?:\s*\.\s*" + _IDENT + r"){0,2})",
    re.IGNORECASE,
)
_PART_RE = re.compile(_IDENT)

_QUOTES = (('"', '"', '""'), ("[", "]", "]]"), ("`", "`", "``"))


def split_relation_key(key: str) -> Tuple[str, str]:
    """Split ``schema.table`` on the first dot; a bare name has schema ``""``."""
    if "." in key:
        schema, table = key.split(".", 1)
        return schema, table
    return "", key


def strip_identifier_quotes(name: str) -> str:
    for opening, closing, escaped in _QUOTES:
        if len(name) > 2 and name.startswith(opening) and name.endswith(closing):
            return name[1:-1].replace(escaped, closing)
    return name


def final_select_segment(sql: str) -> str:
    """Return the text from the last SELECT keyword onwards."""
    last = None
    for match in _SELECT_RE.finditer(sql):
        last = match
    return sql if last is None else sql[last.start():]


def split_top_level_commas(text: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    in_quote = False
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_quote:
            if ch == "'":
                if i + 1 < n and text[i + 1] == "'":
                    i += 1
                else:
                    in_quote = False
        elif ch == "'":
            in_quote = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
        elif ch == "," and depth == 0:
            parts.append(text[start:i].strip())
            start = i + 1
        i += 1
    if start < n:
        parts.append(text[start:].strip())
    return parts


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_#$"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_#$"


def _skip_space(text: str, i: int) -> int:
    while i < len(text) and text[i].isspace():
        i += 1
    return i


def _skip_parens(text: str, i: int) -> int:
    # text[i] is "(".
    depth = 1
    i += 1
    while i < len(text) and depth > 0:
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
        i += 1
    return i


def extract_cte_names(sql: str) -> Set[str]:
    """Lower-cased names defined by a leading WITH clause."""
    match = _WITH_RE.search(sql)
    if match is None:
        return set()

    names: Set[str] = set()
    i = _skip_space(sql, match.end())
    if sql[i:i + 9].lower() == "recursive":
        i = _skip_space(sql, i + 9)

    while i < len(sql):
        name = ""
        if sql[i] in ('"', "[", "`"):
            closing = {'"': '"', "[": "]", "`": "`"}[sql[i]]
            j = i + 1
            while j < len(sql) and sql[j] != closing:
                j += 1
            name = strip_identifier_quotes(sql[i:j + 1])
            i = j + 1
        elif _is_ident_start(sql[i]):
            j = i
            while j < len(sql) and _is_ident_char(sql[j]):
                j += 1
            name = sql[i:j]
            i = j
        if name:
            names.add(name.lower())

        i = _skip_space(sql, i)
        if i < len(sql) and sql[i] == "(":
            i = _skip_parens(sql, i)

        i = _skip_space(sql, i)
        as_match = _AS_RE.search(sql, i)
        if as_match is None:
            break
        i = _skip_space(sql, as_match.end())
        if i >= len(sql) or sql[i] != "(":
            break
        i = _skip_space(sql, _skip_parens(sql, i))

        if i < len(sql) and sql[i] == ",":
            i = _skip_space(sql, i + 1)
            continue
        break

    return names


def extract_projection_names(sql: str) -> List[str]:
    """Output column names of the final SELECT, in order, deduplicated case-insensitively."""
    match = _SELECT_LIST_RE.search(final_select_segment(sql))
    if match is None:
        return []

    names: List[str] = []
    seen: Set[str] = set()
    for item in split_top_level_commas(match.group(1)):
        for pattern in _PROJECTION_PATTERNS:
            found = pattern.search(item.strip())
            if found:
                name = strip_identifier_quotes(found.group(1))
                if name.lower() not in seen:
                    seen.add(name.lower())
                    names.append(name)
                break
    return names


def scan_relations(sql: str) -> List[Tuple[Optional[str], str]]:
    """FROM/JOIN targets of the final SELECT as ``(schema, table)`` pairs.

    Bare names that match a CTE are dropped. Three-part names keep the last
    two parts.
    """
    ctes = extract_cte_names(sql)
    relations: List[Tuple[Optional[str], str]] = []
    for match in _RELATION_RE.finditer(final_select_segment(sql)):
        parts = [strip_identifier_quotes(p) for p in _PART_RE.findall(match.group(1))]
        if len(parts) == 1:
            if parts[0].lower() in ctes:
                continue
            relation: Tuple[Optional[str], str] = (None, parts[0])
        else:
            relation = (parts[-2], parts[-1])
        if relation not in relations:
            relations.append(relation)
    return relations


_SOURCE_COLUMN_RE = re.compile(
    r"^\s*(?:" + _IDENT + r"\s*\.\s*)?(" + _IDENT + r")\s+(?:as\s+)?(" + _IDENT + r")\s*$",
    re.IGNORECASE,
)


def projection_sources(sql: str) -> Dict[str, str]:
    """Map lower-cased aliases of renamed bare columns to the underlying column.

    ``SELECT o.status AS order_status`` gives ``{"order_status": "status"}``.
    Expressions other than a plain or qualified column are ignored.
    """
    match = _SELECT_LIST_RE.search(final_select_segment(sql))
    if match is None:
        return {}
    sources: Dict[str, str] = {}
    for item in split_top_level_commas(match.group(1)):
        found = _SOURCE_COLUMN_RE.match(item)
        if found is None:
            continue
        column = strip_identifier_quotes(found.group(1))
        alias = strip_identifier_quotes(found.group(2))
        if column.lower() != "as":
            sources.setdefault(alias.lower(), column)
    return sources
