import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from escapetime import EvaluatorConfig, Viewport


@pytest.fixture
def small_viewport():
    # 50 x 40 pixels over the classic view.
    return Viewport(-3.0, 2.0, -2.0, 2.0, 10.0)


@pytest.fixture
def small_config():
    return EvaluatorConfig(worker_count=8, stride=1, iteration_cap=50)
