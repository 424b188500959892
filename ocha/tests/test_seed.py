from sqlalchemy import func, select

from ocha.app.db.models.models_v1 import Category, StorageLocation
from ocha.app.db.seed import DEFAULT_LOCATIONS, run_seed


def test_seed_is_idempotent(session_factory):
    first = run_seed(session_factory)
    second = run_seed(session_factory)

    assert first["storage_locations"] == len(DEFAULT_LOCATIONS)
    assert first["categories"] == 7
    assert second == {"storage_locations": 0, "categories": 0}

    with session_factory() as db:
        assert db.scalar(select(func.count(StorageLocation.id))) == len(DEFAULT_LOCATIONS)
        fish = db.scalar(select(Category).where(Category.name == "Fish"))
        assert fish.parent_id is not None
