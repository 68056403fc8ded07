from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture()
def relay():
    from signaling.loopback import LoopbackRelay

    return LoopbackRelay()


@pytest.fixture()
def platform():
    from fakes import FakePlatform

    return FakePlatform("A")


@pytest.fixture()
def app(relay, platform):
    from calls.engine import SessionEngine
    from main import create_app

    # The factory stands in for build_engine so tests never load aiortc or dial a relay.
    return create_app(lambda: SessionEngine(relay.channel("A"), platform))


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
