"""Shared fixtures: throwaway SQLite stores and synthetic tile images."""

import os
from io import BytesIO

os.environ.setdefault("LOCAL_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("REMOTE_DATABASE_URL", None)
os.environ.pop("POSTGRES_URL", None)

import pytest
from PIL import Image

from jamgrid.database import Base, RemoteBase, create_tables, make_local_engine, make_session_maker
from jamgrid.services.store import LocalStore
from jamgrid.tiles import ContentRect


@pytest.fixture
async def local_session_maker(tmp_path):
    """Session maker for an empty local store."""
    engine = make_local_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    await create_tables(engine, Base)
    yield make_session_maker(engine)
    await engine.dispose()


@pytest.fixture
async def remote_session_maker(tmp_path):
    """Session maker for an empty remote store."""
    engine = make_local_engine(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}")
    await create_tables(engine, RemoteBase)
    yield make_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(local_session_maker):
    return LocalStore(local_session_maker)


@pytest.fixture
def small_rect():
    """A 40x30 tile with a 20x12 content area."""
    return ContentRect(tile_width=40, tile_height=30, left=6, top=8, right=14, bottom=10)


def make_tile(rect: ContentRect, seed: int) -> Image.Image:
    """Deterministic RGB tile whose pixels differ between seeds."""
    img = Image.new("RGB", (rect.tile_width, rect.tile_height))
    img.putdata([
        ((seed * 37 + i) % 256, (seed * 11 + i * 3) % 256, (seed * 5 + i * 7) % 256)
        for i in range(rect.tile_width * rect.tile_height)
    ])
    return img


def png_bytes(img: Image.Image) -> bytes:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
