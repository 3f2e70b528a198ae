"""
Shared test configuration and fixtures for filerelay tests.
"""

import os
from dataclasses import replace
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

from app import create_app
from relay.settings import Settings
from tests.fake_tools import FakeTools


# ===== FAKE TOOLS =====

@pytest.fixture
def fake_tools(tmp_path: Path, monkeypatch) -> FakeTools:
    """Fake converter scripts on PATH."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return FakeTools(bin_dir)


# ===== DIRECTORIES AND SETTINGS =====

@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    path = tmp_path / "converted"
    path.mkdir()
    return path


@pytest.fixture
def settings(upload_dir: Path, output_dir: Path) -> Settings:
    """Settings pointing at temporary directories, with the sweep disabled."""
    return Settings(
        upload_dir=upload_dir,
        output_dir=output_dir,
        max_file_size_bytes=1024 * 1024,
        max_files_per_request=5,
        max_workers=2,
        conversion_timeout=30.0,
        retention_enabled=False,
    )


@pytest.fixture
def make_client(settings: Settings) -> Callable[..., TestClient]:
    """Factory for test clients; keyword arguments override settings fields."""
    clients = []

    def factory(**overrides) -> TestClient:
        client = TestClient(create_app(replace(settings, **overrides)))
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    """Test client running the application lifespan."""
    return make_client()


@pytest.fixture
def make_input(upload_dir: Path) -> Callable[[str, bytes], Path]:
    """Write a file into the upload directory and return its path."""
    def factory(name: str, content: bytes = b"sample content\n") -> Path:
        path = upload_dir / name
        path.write_bytes(content)
        return path
    return factory
