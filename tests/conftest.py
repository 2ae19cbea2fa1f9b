"""Root pytest hooks for SensorSuite.

Markers are declared in pyproject.toml. Tests marked ``hardware`` open a
real microphone or camera and only run with ``--run-hardware``.
"""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


# =============================================================================
# Hardware opt-in
# =============================================================================

def pytest_addoption(parser):
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Also run tests that open a real microphone or camera",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-hardware"):
        return
    needs_device = pytest.mark.skip(reason="needs a device; pass --run-hardware")
    for item in items:
        if item.get_closest_marker("hardware") is not None:
            item.add_marker(needs_device)
