import sys
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pytest import MonkeyPatch

# Ensure the package can be imported without installation
ROOT_DIR = Path(__file__).parent.parent.parent
sys.path.insert(0, str(ROOT_DIR))

from solagent_forge import config
from solagent_forge.dispatcher import Dispatcher
from solagent_forge.registry import build_registry

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


# --- Dispatcher Fixture ---

@pytest.fixture(scope="function")
def dispatcher() -> Dispatcher:
    """A dispatcher over a freshly built default registry."""
    return Dispatcher(build_registry())


# --- Mock RPC Client Fixtures ---

@pytest.fixture(scope="function")
def mock_async_client_cls() -> Generator[MagicMock, None, None]:
    """Patches the AsyncClient class used by the RPC tools."""
    with patch("solagent_forge.rpc.AsyncClient") as MockAsyncClient:
        yield MockAsyncClient


@pytest.fixture(scope="function")
def mock_rpc_client(mock_async_client_cls: MagicMock) -> AsyncMock:
    """The client instance handed out by ``async with AsyncClient(...)``."""
    client = AsyncMock()
    mock_async_client_cls.return_value.__aenter__.return_value = client
    return client


# --- Configuration Fixtures ---

@pytest.fixture(scope="function")
def short_rpc_timeout(monkeypatch: MonkeyPatch) -> float:
    monkeypatch.setattr(config, "RPC_TIMEOUT", 2.0)
    return 2.0


@pytest.fixture(scope="function")
def scaffold_root(monkeypatch: MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Points the scaffold root at a fresh temporary directory."""
    root = tmp_path_factory.mktemp("scaffold")
    monkeypatch.setattr(config, "SCAFFOLD_ROOT", root)
    return root
