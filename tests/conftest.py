import sys, pytest
from pathlib import Path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path: sys.path.insert(0, str(ROOT))
from .kernel_utils import make_core


@pytest.fixture
def kernel_core():
    core, server, interp = make_core()
    yield core, server, interp
