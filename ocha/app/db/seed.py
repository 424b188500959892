from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from ocha.app.db.session import SessionLocal
from ocha.app.db.models.models_v1 import Category, StorageLocation
from ocha.app.db.models.core_types import LocationType

# (code, nom, type, température, capacité)
DEFAULT_LOCATIONS = [
    ("FRIDGE-1", "Main refrigerator", LocationType.refrigerator, Decimal("3"), Decimal("500")),
    ("FREEZER-1", "Main freezer", LocationType.freezer, Decimal("-18"), Decimal("300")),
    ("DRY-1", "Dry storage", LocationType.dry_storage, None, Decimal("1000")),
    ("COUNTER-1", "Sushi counter", LocationType.counter, Decimal("4"), Decimal("50")),
]

DEFAULT_CATEGORIES = {
    "Seafood": ["Fish", "Shellfish"],
    "Rice & grains": [],
    "Vegetables": [],
    "Sauces & condiments": [],
    "Packaging": [],
}


def run_seed(session_factory=SessionLocal) -> dict:
    """Locations et catégories par défaut. Rejouable : rien n'est dupliqué."""
    db = session_factory()
    created = {"storage_locations": 0, "categories": 0}
    try:
        # 1) Locations (clé : code)
        for code, name, type_, temperature, capacity in DEFAULT_LOCATIONS:
            exists = db.scalar(select(StorageLocation.id).where(StorageLocation.code == code))
            if not exists:
                db.add(StorageLocation(code=code, name=name, type=type_, temperature=temperature, capacity=capacity))
                created["storage_locations"] += 1
        db.commit()

        # 2) Catégories (clé : nom + parent)
        for parent_name, children in DEFAULT_CATEGORIES.items():
            parent = db.scalar(
                select(Category).where(Category.name == parent_name, Category.parent_id.is_(None))
            )
            if not parent:
                parent = Category(name=parent_name)
                db.add(parent)
                db.flush()
                created["categories"] += 1
            for child_name in children:
                child = db.scalar(
                    select(Category.id).where(Category.name == child_name, Category.parent_id == parent.id)
                )
                if not child:
                    db.add(Category(name=child_name, parent_id=parent.id))
                    created["categories"] += 1
        db.commit()
        return created
    finally:
        db.close()


if __name__ == "__main__":
    result = run_seed()
    print(f"SEED OK: locations+={result['storage_locations']} categories+={result['categories']}")
