import logging
import os

import pytest

from replica_sync import SyncContext


@pytest.fixture
def make_file():
    def _make(path, content="x", mtime=None):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def trees(tmp_path):
    source = tmp_path / "source"
    replica = tmp_path / "replica"
    source.mkdir()
    return source, replica


@pytest.fixture
def ctx():
    # Not the app logger: that one stops propagation, which hides records from caplog.
    return SyncContext(logging.getLogger("replica_sync_tests"))
