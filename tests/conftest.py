"""Shared pytest fixtures: HTML pages and hydration page builder."""

import json
from pathlib import Path
from typing import Callable

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture()
def counters_html() -> str:
    return (FIXTURES_DIR / "counters_annie_mid.html").read_text(encoding="utf-8")


@pytest.fixture()
def counters_no_table_html() -> str:
    return (FIXTURES_DIR / "counters_no_table.html").read_text(encoding="utf-8")


@pytest.fixture()
def champions_html() -> str:
    return (FIXTURES_DIR / "champions_listing.html").read_text(encoding="utf-8")


def _flight_page(stream: str, pieces: int = 3) -> str:
    size = max(1, -(-len(stream) // pieces))
    scripts = ["<script>(self.__next_f=self.__next_f||[]).push([0])</script>"]
    for i in range(0, len(stream), size):
        chunk = json.dumps([1, stream[i:i + size]])
        scripts.append(f"<script>self.__next_f.push({chunk})</script>")
    return "<html><body>" + "\n".join(scripts) + "</body></html>"


@pytest.fixture()
def make_flight_page() -> Callable[..., str]:
    """Builds a page whose flight stream is split over ``pieces`` push scripts."""
    return _flight_page
