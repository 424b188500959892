from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from ocha.app.db.models.models_v1 import TransportationOrder
from ocha.app.db.models.core_types import NotificationType, TransportStatus
from ocha.app.db.transaction import unit_of_work
from ocha.services import transportation
from ocha.services.errors import InsufficientStock, InvalidStateTransition, ValidationError
from ocha.services.inventory import current_quantity, decrement_inventory, merge_inventory
from ocha.services.workflow import load


def _stock(db, product_id, location_id, quantity):
    with unit_of_work(db):
        merge_inventory(db, product_id=product_id, location_id=location_id, quantity=quantity)


def _schedule(db, notifier, kitchen, items):
    return transportation.schedule(
        db,
        notifier,
        from_location_id=kitchen["fridge"],
        to_location_id=kitchen["freezer"],
        items=items,
        driver="driver.manu",
        vehicle="VAN-01",
    )


def test_transport_moves_stock_on_delivery(db_session, notifier, kitchen):
    """
    GIVEN
    - 9 saumons au frigo
    - un transport frigo -> congélateur de 2 lignes saumon (3 + 4)

    THEN
    - start() ne bouge rien
    - complete() : frigo == 2, congélateur == 7
    - pas de stock bas : le total reste 9
    """
    # ---------- ARRANGE ----------
    _stock(db_session, kitchen["salmon"], kitchen["fridge"], 9)
    order = _schedule(
        db_session,
        notifier,
        kitchen,
        [{"product_id": kitchen["salmon"], "quantity": 3}, {"product_id": kitchen["salmon"], "quantity": 4}],
    )
    assert order.status == TransportStatus.scheduled
    assert order.transport_number == f"TR-{date.today():%Y%m%d}-001"
    assert notifier.events == [(NotificationType.transportation_scheduled, order.id, "driver.manu")]

    order = transportation.start(db_session, order.id)
    assert order.status == TransportStatus.in_transit
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 9

    # ---------- ACT ----------
    order = transportation.complete(db_session, notifier, order.id)

    # ---------- ASSERT ----------
    assert order.status == TransportStatus.delivered
    assert order.actual_arrival is not None
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 2
    assert current_quantity(db_session, kitchen["salmon"], kitchen["freezer"]) == 7
    assert NotificationType.inventory_low not in notifier.types()


def test_start_checks_cumulated_availability(db_session, notifier, kitchen):
    _stock(db_session, kitchen["salmon"], kitchen["fridge"], 5)
    order = _schedule(
        db_session,
        notifier,
        kitchen,
        [{"product_id": kitchen["salmon"], "quantity": 3}, {"product_id": kitchen["salmon"], "quantity": 3}],
    )

    with pytest.raises(InsufficientStock):
        transportation.start(db_session, order.id)
    assert load(db_session, TransportationOrder, order.id, refresh=True).status == TransportStatus.scheduled


def test_delivery_fails_if_stock_left_meanwhile(db_session, notifier, kitchen):
    _stock(db_session, kitchen["sushi"], kitchen["fridge"], 4)
    order = _schedule(db_session, notifier, kitchen, [{"product_id": kitchen["sushi"], "quantity": 4}])
    transportation.start(db_session, order.id)

    with unit_of_work(db_session):
        decrement_inventory(db_session, product_id=kitchen["sushi"], location_id=kitchen["fridge"], quantity=2)

    with pytest.raises(InsufficientStock):
        transportation.complete(db_session, notifier, order.id)

    order = load(db_session, TransportationOrder, order.id, refresh=True)
    assert order.status == TransportStatus.in_transit
    assert current_quantity(db_session, kitchen["sushi"], kitchen["fridge"]) == 2
    assert current_quantity(db_session, kitchen["sushi"], kitchen["freezer"]) == 0


def test_schedule_validations(db_session, notifier, kitchen):
    with pytest.raises(ValidationError):
        transportation.schedule(
            db_session,
            notifier,
            from_location_id=kitchen["fridge"],
            to_location_id=kitchen["fridge"],
            items=[{"product_id": kitchen["salmon"], "quantity": 1}],
        )
    with pytest.raises(ValidationError):
        _schedule(db_session, notifier, kitchen, [])
    with pytest.raises(ValidationError):
        _schedule(db_session, notifier, kitchen, [{"product_id": kitchen["salmon"], "quantity": Decimal("-1")}])
    assert notifier.events == []


@pytest.mark.parametrize(
    "item",
    [{"quantity": 1}, {"product_id": None, "quantity": 1}, {"product_id": "salmon", "quantity": 1}],
)
def test_schedule_rejects_malformed_product_ids(db_session, notifier, kitchen, item):
    with pytest.raises(ValidationError) as exc:
        _schedule(db_session, notifier, kitchen, [item])

    assert exc.value.details["field"] == "items[0].product_id"
    assert db_session.execute(select(TransportationOrder)).scalars().all() == []


def test_delivered_transport_cannot_be_cancelled(db_session, notifier, kitchen):
    _stock(db_session, kitchen["salmon"], kitchen["fridge"], 10)
    order = _schedule(db_session, notifier, kitchen, [{"product_id": kitchen["salmon"], "quantity": 1}])
    transportation.start(db_session, order.id)
    transportation.complete(db_session, notifier, order.id)

    with pytest.raises(InvalidStateTransition):
        transportation.cancel(db_session, order.id)
