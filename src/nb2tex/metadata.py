"""Metadata extraction from the first markdown cell of a notebook."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .latex import DATE_PLACEHOLDER

EMAIL_RE = re.compile(r"<([^>]+@[^>]+)>|([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})")
KEY_VALUE_RE = re.compile(r"^\s*(\w+)\s*:\s*(.*)$")
LIST_ITEM_RE = re.compile(r"^[-*+]\s+(.*)$")
TITLE_HEADING_RE = re.compile(r"^#\s+(.*)$")
SUBTITLE_HEADING_RE = re.compile(r"^##\s+(.*)$")
PARENTHETICAL_RE = re.compile(r"^(.*?)\s*\((.*?)\)\s*$")

KEY_ALIASES = {
    "author": "authors",
    "supervisor": "supervisors",
    "keyword": "keywords",
    "disclaimers": "disclaimer",
    "acknowledgement": "acknowledgements",
}
SCALAR_KEYS = {
    "title": "title",
    "subtitle": "subtitle",
    "date": "date",
    "currentdegrees": "current_degrees",
    "orcid": "orcid",
    "submittedfor": "submitted_for",
    "school": "school",
    "keywords": "keywords",
}
PERSON_KEYS = ("authors", "supervisors")
BLOCK_KEYS = ("disclaimer", "abstract", "declaration", "acknowledgements")
RECOGNIZED_KEYS = set(SCALAR_KEYS) | set(PERSON_KEYS) | set(BLOCK_KEYS) | set(KEY_ALIASES)


@dataclass
class Person:
    name: str = ""
    email: str = ""
    affiliation: str = ""


@dataclass
class Metadata:
    title: str = ""
    subtitle: str = ""
    date: str = DATE_PLACEHOLDER
    keywords: str = ""
    current_degrees: str = ""
    orcid: str = ""
    submitted_for: str = ""
    school: str = ""
    disclaimer: str = ""
    abstract: str = ""
    declaration: str = ""
    acknowledgements: str = ""
    authors: List[Person] = field(default_factory=list)
    supervisors: List[Person] = field(default_factory=list)


def cell_source(cell: Dict[str, Any]) -> str:
    source = cell.get("source") or ""
    if isinstance(source, list):
        return "".join(str(part) for part in source)
    return str(source)


def first_markdown_index(notebook: Dict[str, Any]) -> Optional[int]:
    for idx, cell in enumerate(notebook.get("cells") or []):
        if isinstance(cell, dict) and cell.get("cell_type") == "markdown":
            return idx
    return None


def parse_person(payload: Optional[str]) -> Person:
    """Parse ``Name | Affil``, ``Name (Affil)`` or ``Name, Affil`` with an optional email anywhere."""
    text = (payload or "").strip()
    bullet = LIST_ITEM_RE.match(text)
    if bullet:
        text = bullet.group(1).strip()

    email = ""
    match = EMAIL_RE.search(text)
    if match:
        email = (match.group(1) or match.group(2) or "").strip()
        text = EMAIL_RE.sub("", text).replace("<>", "").strip()

    if "|" in text:
        parts = [part.strip() for part in text.split("|") if part.strip()]
        name = parts[0] if parts else ""
        affiliation = parts[1] if len(parts) > 1 else ""
    else:
        paren = PARENTHETICAL_RE.match(text)
        if paren:
            name = paren.group(1).strip()
            affiliation = paren.group(2).strip()
        else:
            parts = [part.strip() for part in re.split(r",\s*", text)]
            name = parts[0] if parts else ""
            affiliation = parts[1] if len(parts) > 1 else ""

    return Person(name=name, email=email, affiliation=affiliation)


def _canonical_key(raw_key: str) -> str:
    key = raw_key.lower()
    return KEY_ALIASES.get(key, key)


def parse_metadata_text(text: str) -> Metadata:
    meta = Metadata()
    block_key: Optional[str] = None
    block_lines: List[str] = []
    person_list_key: Optional[str] = None
    title_fallback = ""
    subtitle_fallback = ""
    title_set = False
    subtitle_set = False

    def flush_block() -> None:
        nonlocal block_key, block_lines
        if block_key is not None:
            setattr(meta, block_key, "\n".join(block_lines).strip())
        block_key = None
        block_lines = []

    for raw in text.split("\n"):
        raw = raw[:-1] if raw.endswith("\r") else raw
        stripped = raw.strip()
        key_match = KEY_VALUE_RE.match(stripped)
        is_key_line = bool(key_match) and key_match.group(1).lower() in RECOGNIZED_KEYS

        if block_key is not None:
            if not is_key_line:
                block_lines.append(raw)
                continue
            flush_block()

        if person_list_key is not None and not is_key_line:
            if not stripped:
                continue
            item = LIST_ITEM_RE.match(stripped)
            if item:
                if item.group(1).strip():
                    getattr(meta, person_list_key).append(parse_person(item.group(1)))
                continue
            person_list_key = None

        if is_key_line:
            person_list_key = None
            key = _canonical_key(key_match.group(1))
            value = key_match.group(2).strip()

            if key in SCALAR_KEYS:
                if key == "title":
                    if not title_set:
                        meta.title = value
                        title_set = True
                elif key == "subtitle":
                    if not subtitle_set:
                        meta.subtitle = value
                        subtitle_set = True
                elif key == "date":
                    meta.date = value or DATE_PLACEHOLDER
                else:
                    setattr(meta, SCALAR_KEYS[key], value)
                continue

            if key in PERSON_KEYS:
                if value:
                    getattr(meta, key).append(parse_person(value))
                else:
                    person_list_key = key
                continue

            if key in BLOCK_KEYS:
                block_key = key
                if value:
                    block_lines.append(value)
                continue

        heading = TITLE_HEADING_RE.match(stripped)
        if heading:
            if not title_fallback:
                title_fallback = heading.group(1).strip()
            continue
        sub_heading = SUBTITLE_HEADING_RE.match(stripped)
        if sub_heading and not subtitle_fallback:
            subtitle_fallback = sub_heading.group(1).strip()

    flush_block()

    if not title_set and title_fallback:
        meta.title = title_fallback
    if not subtitle_set and subtitle_fallback:
        meta.subtitle = subtitle_fallback
    if not meta.authors:
        meta.authors = [Person()]
    return meta


def parse_meta_from_first_markdown(notebook: Dict[str, Any]) -> Tuple[Metadata, Optional[int]]:
    idx = first_markdown_index(notebook)
    if idx is None:
        meta = Metadata()
        meta.authors = [Person()]
        return meta, None
    return parse_metadata_text(cell_source(notebook["cells"][idx])), idx
