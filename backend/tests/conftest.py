import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from chatcore.domain.conversations import directory as directory_module
from chatcore.domain.conversations import repo as conversation_repo
from chatcore.domain.search import repo as message_repo


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	"""Repositories fall back to their in-memory stores when no pool is available."""

	async def _no_pool():
		raise RuntimeError("postgres disabled in tests")

	monkeypatch.setattr(conversation_repo, "get_pool", _no_pool)
	monkeypatch.setattr(directory_module, "get_pool", _no_pool)
	monkeypatch.setattr(message_repo, "get_pool", _no_pool)


@pytest_asyncio.fixture(autouse=True)
async def reset_memory_stores():
	await conversation_repo.reset_memory_state()
	await message_repo.reset_memory_state()
	await directory_module.memory_directory().reset()
	yield
	await conversation_repo.reset_memory_state()
	await message_repo.reset_memory_state()
	await directory_module.memory_directory().reset()
