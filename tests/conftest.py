import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):
    """Ensure src/ is on sys.path for local test runs."""
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def scheduler():
    """A paused BackgroundScheduler that is shut down after the test."""
    from apscheduler.schedulers.background import BackgroundScheduler

    background = BackgroundScheduler()
    background.start(paused=True)
    yield background
    background.shutdown(wait=False)
