from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ocha.app.db.models.models_v1 import Category, Product
from ocha.app.db.store import RecordStore
from ocha.services import reconcile as rc
from ocha.services.errors import NotFound, PartialFailure, ValidationError

T0 = datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)


def _rec(id, name, days=0, **extra):
    return {"id": id, "name": name, "created_at": T0 + timedelta(days=days) if days is not None else None, **extra}


def test_newest_is_kept_among_name_variants():
    """
    GIVEN
    - 3 produits "Sushi Salmon" (casse / espaces différents), créés à J0, J2, J1

    THEN
    - strategy=newest garde J2, les deux autres sont retirés
    """
    records = [
        _rec(1, "Sushi Salmon", 0),
        _rec(2, "  sushi   SALMON ", 2),
        _rec(3, "SUSHI salmon", 1),
        _rec(4, "Tuna roll", 0),
    ]

    result = rc.plan(records, ["name"], "newest", collection="products")

    assert len(result.groups) == 1
    group = result.groups[0]
    assert group.key == "sushi salmon"
    assert group.kept["id"] == 2
    assert sorted(r["id"] for r in result.retired) == [1, 3]
    assert sorted(r["id"] for r in result.survivors) == [2, 4]


def test_plan_never_empties_a_group_and_partitions_input():
    records = [_rec(i, "Miso" if i % 2 else "Ponzu", days=i) for i in range(1, 8)]

    result = rc.plan(records, "name", "oldest")

    kept_ids = {r["id"] for r in result.kept}
    retired_ids = {r["id"] for r in result.retired}
    assert kept_ids == {1, 2}
    assert kept_ids.isdisjoint(retired_ids)
    assert kept_ids | retired_ids == {r["id"] for r in records}


def test_undated_records_sort_last():
    records = [_rec(1, "Nori", None), _rec(2, "Nori", 0), _rec(3, "Nori", None)]

    assert rc.plan(records, ["name"], "newest").groups[0].kept["id"] == 2
    assert rc.plan(records, ["name"], "oldest").groups[0].kept["id"] == 2


def test_price_strategies_use_list_price():
    records = [
        _rec(1, "Wasabi", list_price=Decimal("3.20")),
        _rec(2, "wasabi", list_price=Decimal("4.10")),
        _rec(3, "WASABI", list_price=None),
    ]

    assert rc.plan(records, ["name"], "highest_price").groups[0].kept["id"] == 2
    assert rc.plan(records, ["name"], "lowest_price").groups[0].kept["id"] == 3


def test_empty_keys_are_ignored_and_parent_scopes_categories():
    records = [
        {"id": 1, "name": "", "parent_id": None},
        {"id": 2, "name": None, "parent_id": None},
        {"id": 3, "name": "Fish", "parent_id": 10},
        {"id": 4, "name": "fish", "parent_id": 11},
        {"id": 5, "name": "FISH ", "parent_id": 10},
    ]

    result = rc.plan(records, None, "oldest", collection="categories")

    assert result.keys == ["name_parent"]
    assert [(g.key, g.kept["id"]) for g in result.groups] == [("fish_10", 3)]
    assert [r["id"] for r in result.retired] == [5]


def test_successive_keys_run_on_survivors():
    records = [
        {"id": 1, "name": "Salmon", "code": "SAL", "created_at": T0},
        {"id": 2, "name": "salmon", "code": "SAL-2", "created_at": T0 + timedelta(days=1)},
        {"id": 3, "name": "Salmon fillet", "code": "sal-2", "created_at": T0 + timedelta(days=2)},
    ]

    result = rc.plan(records, "name,code", "newest")

    # le gagnant "name" (2) perd ensuite sur "code" : un seul groupe, gardé 3
    assert [g.key_name for g in result.groups] == ["code"]
    assert [r["id"] for r in result.survivors] == [3]
    assert [r["id"] for r in result.kept] == [3]
    assert sorted(r["id"] for r in result.retired) == [1, 2]


def test_later_pass_never_keeps_a_retired_record():
    """
    GIVEN
    - 1 "Salmon" / SAL (J2), 2 "salmon" / X (J0), 3 "Tuna" / sal (J5)
    - clés name puis code, strategy=newest

    THEN
    - 1 gagne sur name puis perd sur code contre 3
    - kept et retired sont disjoints et couvrent tous les doublons
    """
    records = [
        {"id": 1, "name": "Salmon", "code": "SAL", "created_at": T0 + timedelta(days=2)},
        {"id": 2, "name": "salmon", "code": "X", "created_at": T0},
        {"id": 3, "name": "Tuna", "code": "sal", "created_at": T0 + timedelta(days=5)},
    ]

    result = rc.plan(records, "name,code", "newest")

    kept_ids = [r["id"] for r in result.kept]
    retired_ids = sorted(r["id"] for r in result.retired)
    assert kept_ids == [3]
    assert retired_ids == [1, 2]
    assert set(kept_ids).isdisjoint(retired_ids)
    assert len(kept_ids) + len(retired_ids) == len(records)
    assert [r["id"] for r in result.survivors] == [3]


def test_same_winner_on_two_keys_is_kept_once():
    records = [
        {"id": 1, "name": "Nori", "code": "NOR", "created_at": T0 + timedelta(days=3)},
        {"id": 2, "name": "nori", "code": "N-2", "created_at": T0},
        {"id": 3, "name": "Nori sheet", "code": "nor", "created_at": T0 + timedelta(days=1)},
    ]

    result = rc.plan(records, ["name", "code"], "newest")

    assert [r["id"] for r in result.kept] == [1]
    assert sorted(r["id"] for r in result.retired) == [2, 3]
    assert result.summary()["kept_ids"] == [1]


def test_unparseable_dates_sort_last():
    records = [
        {"id": 1, "name": "Ginger", "created_at": "not-a-date"},
        {"id": 2, "name": "ginger", "created_at": "2026-10-02T08:00:00Z"},
        {"id": 3, "name": "GINGER", "created_at": 20261003},
    ]

    assert rc.plan(records, "name", "newest").groups[0].kept["id"] == 2
    assert rc.plan(records, "name", "oldest").groups[0].kept["id"] == 2


@pytest.mark.parametrize(
    "keys, strategy",
    [(["colour"], "newest"), (["name"], "random"), ([], "newest")],
)
def test_unknown_key_or_strategy(keys, strategy):
    with pytest.raises(ValidationError):
        rc.plan([_rec(1, "x")], keys, strategy)


def test_reconcile_deletes_retired_products(db_session, session_factory):
    # ---------- ARRANGE ----------
    db_session.add_all(
        [
            Product(name="Sushi Salmon", created_at=T0),
            Product(name=" sushi  salmon", created_at=T0 + timedelta(days=3)),
            Product(name="SUSHI SALMON", created_at=T0 + timedelta(days=1)),
            Product(name="Edamame", created_at=T0),
        ]
    )
    db_session.commit()
    store = RecordStore(session_factory, "products")

    # ---------- ACT ----------
    preview = rc.reconcile(store, strategy="newest", dry_run=True)
    result = rc.reconcile(store, strategy="newest")

    # ---------- ASSERT ----------
    assert preview.dry_run is True
    assert len(store.select(fields=["id"])) == 2
    summary = result.summary()
    assert summary["groups"] == 1
    assert summary["retired"] == 2
    assert summary["failures"] == []
    names = sorted(r["name"] for r in store.select(fields=["name"]))
    assert names == [" sushi  salmon", "Edamame"]


def test_reconcile_categories_by_name_and_parent(db_session, session_factory):
    seafood = Category(name="Seafood", created_at=T0)
    db_session.add(seafood)
    db_session.flush()
    db_session.add_all(
        [
            Category(name="Fish", parent_id=seafood.id, created_at=T0),
            Category(name="fish", parent_id=seafood.id, created_at=T0 + timedelta(days=1)),
            Category(name="Fish", parent_id=None, created_at=T0),
        ]
    )
    db_session.commit()

    result = rc.reconcile(RecordStore(session_factory, "categories"), strategy="oldest")

    assert len(result.retired) == 1
    assert result.retired_ok == [result.retired[0]["id"]]


class FlakyStore:
    """Store en mémoire : un id qui échoue, un id déjà supprimé."""

    collection = "products"

    def __init__(self, records, failing=(), vanished=()):
        self.records = records
        self.failing = set(failing)
        self.vanished = set(vanished)
        self.deleted = []

    def select(self, filters=None, fields=None, limit=None):
        return [dict(r) for r in self.records]

    def delete(self, record_id):
        if record_id in self.failing:
            raise NotFound("products", record_id)
        if record_id in self.vanished:
            return False
        self.deleted.append(record_id)
        return True


def test_failures_are_collected_not_fatal():
    """
    GIVEN
    - 4 doublons, le delete du n°2 échoue, le n°3 a déjà disparu

    THEN
    - le lot va au bout : 1 et 3 retirés, 2 en échec
    - strict : PartialFailure (207) avec la liste des échecs
    """
    store = FlakyStore(
        [_rec(1, "Gari", 0), _rec(2, "gari", 1), _rec(3, "GARI", 2), _rec(4, "Gari ", 3)],
        failing={2},
        vanished={3},
    )

    result = rc.reconcile(store, keys="name", strategy="newest")

    assert store.deleted == [1]
    assert [f["id"] for f in result.failures] == [2]
    assert result.vanished == [3]
    assert sorted(result.retired_ok) == [1, 3]
    assert result.summary()["retired"] == 2

    with pytest.raises(PartialFailure) as exc:
        result.raise_for_failures()
    assert exc.value.http_status == 207
    assert exc.value.failures == result.failures


@pytest.mark.parametrize("keys", ["name", "name,code"])
def test_second_run_finds_nothing(db_session, session_factory, keys):
    """
    GIVEN
    - des produits en double sur le nom et sur le code

    THEN
    - un second reconcile sur le résultat du premier ne trouve aucun groupe
    """
    # ---------- ARRANGE ----------
    db_session.add_all(
        [
            Product(name="Salmon", code="SAL", created_at=T0 + timedelta(days=2)),
            Product(name="salmon", code="X-1", created_at=T0),
            Product(name="Tuna", code="sal", created_at=T0 + timedelta(days=5)),
            Product(name="Tuna loin", code="TUN", created_at=T0 + timedelta(days=1)),
            Product(name="tuna LOIN", code="TUN-2", created_at=T0 + timedelta(days=4)),
        ]
    )
    db_session.commit()
    store = RecordStore(session_factory, "products")

    # ---------- ACT ----------
    first = rc.reconcile(store, keys=keys, strategy="newest")
    second = rc.reconcile(store, keys=keys, strategy="newest")

    # ---------- ASSERT ----------
    assert first.summary()["groups"] >= 1
    assert first.failures == []
    remaining = {r["id"] for r in store.select(fields=["id"])}
    assert set(first.summary()["kept_ids"]) <= remaining
    assert remaining.isdisjoint(first.summary()["retired_ids"])
    assert second.summary()["groups"] == 0
    assert second.summary()["retired"] == 0
