"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from fastapi.testclient import TestClient  # noqa: E402

from tweetchat.auth import TokenAuthenticator  # noqa: E402
from tweetchat.server import create_app  # noqa: E402
from tweetchat.storage import DiskObjectStore  # noqa: E402

TOKENS = {"tok-alice": "alice", "tok-bob": "bob"}


class FakeModel:
    """Scripted stand-in for GeminiModel.

    Yields ``fragments`` in order; when ``fail_after`` is set, raises after
    that many fragments have been yielded.
    """

    def __init__(self, fragments: Sequence[str] = ("ok",), fail_after: Optional[int] = None):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.instructions: List[str] = []
        self.model_name = "fake"

    async def stream(self, instruction: str) -> AsyncIterator[str]:
        self.instructions.append(instruction)
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("provider unavailable")
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise RuntimeError("provider unavailable")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in [
        "TWEETCHAT_CONFIG",
        "GEMINI_API_KEY",
        "AWS_REGION",
        "S3_BUCKET_NAME",
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
    ]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("TWEETCHAT__"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for the disk object store."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture
def store(tmp_data_dir: Path) -> DiskObjectStore:
    return DiskObjectStore(str(tmp_data_dir))


@pytest.fixture
def model() -> FakeModel:
    return FakeModel(["Hello", " world"])


@pytest.fixture
def app(tmp_path: Path, store: DiskObjectStore, model: FakeModel):
    return create_app(
        config_path=str(tmp_path / "absent.yaml"),
        model=model,
        store=store,
        authenticator=TokenAuthenticator(TOKENS),
    )


@pytest.fixture
def alice(app) -> TestClient:
    return TestClient(app, headers={"Authorization": "Bearer tok-alice"})


@pytest.fixture
def bob(app) -> TestClient:
    return TestClient(app, headers={"Authorization": "Bearer tok-bob"})


@pytest.fixture
def anonymous(app) -> TestClient:
    return TestClient(app)
