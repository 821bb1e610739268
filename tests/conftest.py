"""Shared test fixtures for branchsync."""

import pytest

from branchsync.diff.engine import DiffEngine
from branchsync.snapshot.store import TreeSnapshotStore
from branchsync.sync.planner import SyncPlanner
from branchsync.testing import InMemoryObjectStore

REPO = "acme/configs"

MAIN_FILES = {
    "config/app.xml": b"<app>\n  <name>widget</name>\n</app>\n",
    "config/db.xml": b"<db>\n  <host>localhost</host>\n</db>\n",
    "config/legacy.xml": b"<legacy/>\n",
    "README.md": b"# configs\n",
}

FEATURE_FILES = {
    # unchanged
    "config/app.xml": MAIN_FILES["config/app.xml"],
    # real change
    "config/db.xml": b"<db>\n  <host>db.internal</host>\n</db>\n",
    # only line endings and trailing whitespace differ from main
    "config/legacy.xml": b"<legacy/>  \r\n\r\n",
    # new file
    "config/cache/redis.xml": b"<redis port=\"6379\"/>\n",
    "docs/notes.md": b"untracked\n",
}


@pytest.fixture
def repo():
    return REPO


@pytest.fixture
def store():
    s = InMemoryObjectStore()
    s.add_branch(REPO, "main", MAIN_FILES)
    s.add_branch(REPO, "feature", FEATURE_FILES)
    return s


@pytest.fixture
def snapshots(store):
    return TreeSnapshotStore(store)


@pytest.fixture
def engine(snapshots):
    return DiffEngine(snapshots, fetch_concurrency=4)


@pytest.fixture
def planner(snapshots):
    return SyncPlanner(snapshots, upload_concurrency=2)


@pytest.fixture
def main_files():
    return dict(MAIN_FILES)


@pytest.fixture
def feature_files():
    return dict(FEATURE_FILES)
