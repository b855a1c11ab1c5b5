"""Global pytest configuration and fixtures."""

import pytest
import sys
import tempfile
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from backup_sentinel._storage import LocalArtifactStore
from backup_sentinel.backup import BackupEngine
from backup_sentinel.config import BackupConfig


@pytest.fixture
def workspace():
    """Temporary directory holding sources, backups and restore targets."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sources(workspace):
    """A directory tree and a standalone file to back up."""
    data_dir = workspace / "data"
    (data_dir / "sub").mkdir(parents=True)
    (data_dir / "a.txt").write_text("alpha")
    (data_dir / "sub" / "b.txt").write_text("bravo")

    config_file = workspace / "config.json"
    config_file.write_text('{"debug": false}')

    return {"dir": data_dir, "file": config_file}


@pytest.fixture
def store(workspace):
    return LocalArtifactStore(str(workspace / "backups"))


@pytest.fixture
def engine(store):
    return BackupEngine(store, BackupConfig())


@pytest.fixture
def restore_dir(workspace):
    target = workspace / "restore"
    target.mkdir()
    return target
