"""
conftest.py — Shared pytest fixtures for the cutlist intake test suite.

No network or external service fixtures are defined here. The LLM layer is
exercised through ``StubProvider``, which implements the provider capability
(``is_configured`` / ``parse_text``) without calling a model.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# LLM provider stub
# ---------------------------------------------------------------------------

class StubProvider:
    """
    Provider double. ``items`` are raw model items run through the real
    item_to_part conversion, so parts look exactly like LLM output.
    """

    def __init__(self, items=None, configured=True, fail_with=None, model="stub/model"):
        self.items = items or []
        self.configured = configured
        self.fail_with = fail_with
        self.model = model
        self.calls = []

    def is_configured(self):
        return self.configured

    async def parse_text(self, text, options):
        from app.services.llm_parser import AIParseResult, item_to_part

        self.calls.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        parts = [item_to_part(item, i, options, self.model) for i, item in enumerate(self.items)]
        return AIParseResult(
            success=bool(parts),
            parts=parts,
            total_confidence=0.8 if parts else 0.0,
            errors=[] if parts else ["no parts"],
        )


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def stub_provider():
    """Configured provider returning one 'Back panel' part of 700 x 500."""
    return StubProvider(items=[{"label": "Back panel", "length": 700, "width": 500, "quantity": 1, "confidence": 0.7}])


@pytest.fixture
def unconfigured_provider():
    return StubProvider(configured=False)


@pytest.fixture
def fake_clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Sample cutlists
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def tab_table():
    """
    Clean tab-separated table, 3 data rows.

    Header maps label=0, length=1, width=2, qty=3, material=4, edgeband=5.
    """
    return (
        "Part\tLength\tWidth\tQty\tMaterial\tEdge\n"
        "Side\t720\t560\t2\tWH\t2L\n"
        "Top\t800\t560\t1\tWH\t4S\n"
        "Shelf\t764\t540\t3\tWH\t-\n"
    )


@pytest.fixture(scope="session")
def csv_table():
    """Comma-separated table with a unit-suffixed header and a rotation column."""
    return (
        "Name,L (mm),W (mm),Thk,Qty,Rotation\n"
        "Door,715,396,18,2,L\n"
        "Drawer front,396,140,18,4,Y\n"
    )


@pytest.fixture(scope="session")
def mixed_input():
    """
    Tab block followed by one free-text sentence.

    The sentence does not reach the L/W columns, so the deterministic layer
    fails it and the regex layer reads 720 x 560, qty 2.
    """
    return (
        "Part\tL\tW\tQty\n"
        "Side\t720\t560\t2\n"
        "Top\t800\t560\t1\n"
        "Side panel 720x560 qty 2\n"
    )


@pytest.fixture(scope="session")
def free_form_lines():
    return (
        "Side panel 720x560 qty 2\n"
        "Shelf 600 x 300 x 4 white melamine\n"
        "Door 715 by 396 2 pcs GL\n"
    )
