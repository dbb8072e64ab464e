import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from reelrank.models import ItemDetails, Person, Tag  # noqa: E402


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("REELRANK_DB", str(db_path))
    import reelrank.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("REELRANK_DB", str(db_path))

    import reelrank.config as config
    import reelrank.database as database

    importlib.reload(config)
    importlib.reload(database)
    database.init_db()

    yield database
    database.close_pool()


@pytest.fixture
def make_item():
    """
    Factory for ItemDetails with plain-name arguments.

    Genre, keyword and person ids are assigned per distinct name, so the same
    name gets the same id across every item built in one test.
    """
    ids = {}

    def _id(kind, name):
        return ids.setdefault((kind, name.lower()), 10_000_000 + len(ids))

    def _make(
        item_id,
        title="",
        genres=(),
        keywords=(),
        cast=(),
        directors=(),
        year=None,
        runtime=None,
        language=None,
        keyword_ids=None,
    ):
        if keyword_ids is None:
            keyword_ids = [_id("keyword", k) for k in keywords]
        return ItemDetails(
            item_id=item_id,
            title=title or f"Film {item_id}",
            genres=[Tag(_id("genre", g), g) for g in genres],
            keywords=[Tag(kid, k) for kid, k in zip(keyword_ids, keywords)],
            cast=[Person(_id("person", name), name, order=i) for i, name in enumerate(cast)],
            directors=[Person(_id("person", name), name) for name in directors],
            runtime=runtime,
            language=language,
            release_date=f"{year}-01-01" if year else None,
        )

    return _make
