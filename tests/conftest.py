import pathlib
import sys

import pytest

# Make 'import mcscan' work without installing the package.
_SRC = pathlib.Path(__file__).resolve().parent.parent / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from mcscan.config import ScanConfig  # noqa: E402
from mcscan.progress_log import ProgressLogger  # noqa: E402
from mcscan.store import MemoryServerStore  # noqa: E402


@pytest.fixture
def config(tmp_path):
    return ScanConfig(
        timeout=0.5,
        handshake_timeout=0.5,
        batch_pause=0,
        log_path=str(tmp_path / "scan.log"),
    )


@pytest.fixture
def progress(config):
    return ProgressLogger(config.log_path)


@pytest.fixture
def store():
    return MemoryServerStore()
