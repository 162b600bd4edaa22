"""
Decoder for Next.js "flight" hydration data embedded in server-rendered pages.

The page carries a series of ``self.__next_f.push([1, "<chunk>"])`` scripts.
Concatenated, the chunks form a stream of rows ``<hex id>:<payload>``; JSON
payloads point at other rows with ``"$<id>"`` strings instead of nesting them.

Decoding is split in two so that markup drift on the site only touches one half:

1. ``reassemble(html)`` -> ``FlightTree``: chunk collection, row splitting and
   reference resolution. Knows nothing about what the page is about.
2. ``find_data_array(tree, predicate)``: generic walk for the first
   ``{"data": [...]}`` list whose rows look like what the caller wants.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup

from errors import MalformedPayload

logger = logging.getLogger(__name__)

_PUSH_RE = re.compile(r"^\s*\(?\s*self\.__next_f\s*(?:=[^)]*\))?\s*\.push\((\[.*\])\)\s*;?\s*$", re.S)
_ROW_ID_RE = re.compile(r"^[0-9a-fA-F]+$")
_REF_RE = re.compile(r"^\$[L@]?([0-9a-f]+)((?::[^:]+)*)$")

MAX_RESOLVE_DEPTH = 200
MAX_WALK_DEPTH = 64


@dataclass
class FlightTree:
    rows: Dict[str, Any] = field(default_factory=dict)
    tagged: Dict[str, Tuple[str, str]] = field(default_factory=dict)  # id -> (tag, raw body)
    skipped: int = 0
    _resolved: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def root(self) -> Any:
        return self.resolve_row("0") if "0" in self.rows else None

    def resolve_row(self, row_id: str) -> Any:
        return self._resolve_row(row_id, frozenset(), 0)

    def resolve(self, value: Any) -> Any:
        return self._resolve(value, frozenset(), 0)

    def nodes(self) -> Iterator[Any]:
        """Root first, then every other row (some rows are only reachable lazily)."""
        if "0" in self.rows:
            yield self.root
        for row_id in self.rows:
            if row_id != "0":
                yield self.resolve_row(row_id)

    # -----------------------
    # Reference resolution
    # -----------------------
    def _resolve_row(self, row_id: str, stack: frozenset, depth: int) -> Any:
        if row_id in self._resolved:
            return self._resolved[row_id]
        if row_id not in self.rows:
            if row_id not in self.tagged:
                logger.debug("Dangling flight reference $%s", row_id)
            return None
        if row_id in stack:
            return None  # cycle
        value = self._resolve(self.rows[row_id], stack | {row_id}, depth + 1)
        self._resolved[row_id] = value
        return value

    def _resolve(self, value: Any, stack: frozenset, depth: int) -> Any:
        if depth > MAX_RESOLVE_DEPTH:
            return value
        if isinstance(value, str):
            return self._resolve_string(value, stack, depth)
        if isinstance(value, list):
            return [self._resolve(v, stack, depth + 1) for v in value]
        if isinstance(value, dict):
            return {k: self._resolve(v, stack, depth + 1) for k, v in value.items()}
        return value

    def _resolve_string(self, value: str, stack: frozenset, depth: int) -> Any:
        if not value.startswith("$"):
            return value
        if value.startswith("$$"):
            return value[1:]
        if value == "$undefined":
            return None
        m = _REF_RE.match(value)
        if not m:
            return value  # "$Sreact.suspense", "$D<date>" and friends stay as-is
        target = self._resolve_row(m.group(1), stack, depth)
        for part in m.group(2).split(":")[1:]:
            if isinstance(target, dict):
                target = target.get(part)
            elif isinstance(target, list) and part.isdigit() and int(part) < len(target):
                target = target[int(part)]
            else:
                return None
        return target


# -----------------------
# Phase 1: reassembly
# -----------------------
def push_chunks(html: str) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    chunks: List[str] = []
    for script in soup.find_all("script"):
        text = script.string or script.get_text() or ""
        if "__next_f" not in text:
            continue
        m = _PUSH_RE.match(text)
        if not m:
            continue
        try:
            item = json.loads(m.group(1))
        except ValueError:
            logger.debug("Unparseable push script (%d chars)", len(text))
            continue
        # [0] bootstrap, [1, str] flight data, [2, str] form state, [3, b64] binary
        if isinstance(item, list) and len(item) >= 2 and item[0] == 1 and isinstance(item[1], str):
            chunks.append(item[1])
    return chunks


def _split_tag(payload: str) -> Tuple[str, str]:
    if not payload or not payload[0].isalpha() or payload.startswith(("null", "true", "false")):
        return "", payload
    i = 0
    while i < len(payload) and payload[i].isalpha():
        i += 1
    return payload[:i], payload[i:]


def parse_rows(stream: str) -> FlightTree:
    tree = FlightTree()
    data = stream.encode("utf-8")
    n = len(data)
    i = 0
    while i < n:
        if data[i:i + 1] in (b"\n", b"\r"):
            i += 1
            continue
        colon = data.find(b":", i)
        if colon < 0:
            tree.skipped += 1
            break
        row_id = data[i:colon].decode("ascii", "replace").strip()
        if not _ROW_ID_RE.match(row_id):
            nl = data.find(b"\n", i)
            tree.skipped += 1
            if nl < 0:
                break
            i = nl + 1
            continue

        j = colon + 1
        if data[j:j + 1] == b"T":
            # text row: T<hex byte length>,<raw text>
            comma = data.find(b",", j)
            try:
                length = int(data[j + 1:comma], 16)
            except ValueError:
                tree.skipped += 1
                break
            start = comma + 1
            tree.rows[row_id.lower()] = data[start:start + length].decode("utf-8", "replace")
            i = start + length
            continue

        nl = data.find(b"\n", j)
        end = n if nl < 0 else nl
        payload = data[j:end].decode("utf-8", "replace")
        i = end + 1

        tag, body = _split_tag(payload)
        if tag:
            tree.tagged[row_id.lower()] = (tag, body)
            continue
        try:
            tree.rows[row_id.lower()] = json.loads(payload)
        except ValueError:
            tree.skipped += 1  # truncated stream tail, usually
    return tree


def reassemble(html: str) -> FlightTree:
    chunks = push_chunks(html)
    if not chunks:
        raise MalformedPayload("no hydration chunks in page")
    tree = parse_rows("".join(chunks))
    if not tree.rows:
        raise MalformedPayload(f"hydration stream had no parseable rows ({tree.skipped} skipped)")
    logger.debug("Reassembled %d flight rows from %d chunks (%d skipped)", len(tree.rows), len(chunks), tree.skipped)
    return tree


# -----------------------
# Phase 2: tree walk
# -----------------------
def find_data_array(
    tree: FlightTree,
    predicate: Callable[[Dict[str, Any]], bool],
    max_depth: int = MAX_WALK_DEPTH,
) -> Optional[List[Any]]:
    for node in tree.nodes():
        found = _walk_for_data(node, predicate, max_depth)
        if found is not None:
            return found
    return None


def _walk_for_data(node: Any, predicate: Callable[[Dict[str, Any]], bool], max_depth: int) -> Optional[List[Any]]:
    stack: List[Tuple[Any, int]] = [(node, 0)]
    seen = set()
    while stack:
        cur, depth = stack.pop()
        if depth > max_depth or not isinstance(cur, (dict, list)) or id(cur) in seen:
            continue
        seen.add(id(cur))

        if isinstance(cur, dict):
            data = cur.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict) and predicate(data[0]):
                return data
            children = list(cur.values())
        else:
            children = cur
        # reversed so the walk visits children in document order
        stack.extend((c, depth + 1) for c in reversed(children))
    return None
