"""Tests for payment confirmation of holds"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from app.models.order import Order, OrderType, PaymentStatus
from app.models.reservation import Reservation, ReservationStatus
from app.models.table import DiningTable, TableStatus
from app.schemas.order import OrderCreate, OrderItemCreate
from app.schemas.payment import PaymentEvent, PaymentEventOutcome
from app.services.cancellation import CancellationPolicyEnforcer
from app.services.holds import ReservationHoldManager
from app.services.orders import OrderMaterializer
from app.services.payments import ConfirmationOutcome, PaymentConfirmationHandler

from conftest import hold_request


def succeeded(payment_reference, reservation_id=None, order=None, amount_cents=2000):
    return PaymentEvent(
        payment_reference=payment_reference,
        outcome=PaymentEventOutcome.SUCCEEDED,
        amount_cents=amount_cents,
        reservation_id=reservation_id,
        order=order,
    )


def failed(payment_reference, reservation_id=None):
    return PaymentEvent(
        payment_reference=payment_reference,
        outcome=PaymentEventOutcome.FAILED,
        reservation_id=reservation_id,
    )


async def _count_orders(db, payment_reference):
    result = await db.execute(
        select(func.count(Order.id)).where(Order.payment_reference == payment_reference)
    )
    return result.scalar()


async def _table(db, table_id):
    return await db.get(DiningTable, table_id, populate_existing=True)


@pytest.fixture
def handler(test_db, clock, notifier):
    return PaymentConfirmationHandler(test_db, notifier, clock)


@pytest.fixture
def holds(test_db, clock):
    return ReservationHoldManager(test_db, clock)


@pytest.mark.asyncio
async def test_payment_confirms_hold(handler, holds, test_db, seed, notifier):
    """Test a successful payment confirms the hold and reserves the table"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    result = await handler.handle(succeeded("pay_123", hold_id))

    assert result.outcome == ConfirmationOutcome.CONFIRMED
    assert result.reservation.status == ReservationStatus.CONFIRMED
    assert result.reservation.payment_reference == "pay_123"
    assert result.reservation.expires_at is None
    assert result.reservation.confirmed_at is not None

    table = await _table(test_db, seed.table_id)
    assert table.status == TableStatus.RESERVED
    assert table.version == 1

    assert result.order is not None
    assert result.order.payment_status == PaymentStatus.COMPLETED
    assert result.order.payment_amount_cents == 2000
    assert result.order.order_type == OrderType.PRE_ORDER

    assert notifier.on("admin") == [{
        "event": "reservation-confirmed",
        "reservation_id": str(hold_id),
        "table_id": str(seed.table_id),
    }]


@pytest.mark.asyncio
async def test_duplicate_deliveries_converge(handler, holds, test_db, seed, notifier):
    """Test the same payment delivered three times yields one confirmation and one order"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    first = await handler.handle(succeeded("pay_123", hold_id))
    first_order_id = first.order.id
    second = await handler.handle(succeeded("pay_123", hold_id))
    third = await handler.handle(succeeded("pay_123", hold_id))

    assert first.outcome == ConfirmationOutcome.CONFIRMED
    assert second.outcome == ConfirmationOutcome.ALREADY_CONFIRMED
    assert third.outcome == ConfirmationOutcome.ALREADY_CONFIRMED
    assert second.order.id == first_order_id
    assert third.order.id == first_order_id
    assert third.reservation.status == ReservationStatus.CONFIRMED

    assert await _count_orders(test_db, "pay_123") == 1
    table = await _table(test_db, seed.table_id)
    assert table.version == 1
    assert len(notifier.on("admin")) == 1


@pytest.mark.asyncio
async def test_payment_after_expiry_is_rejected(handler, holds, test_db, seed, clock):
    """Test a payment arriving after the hold lapsed neither confirms nor creates an order"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    clock.advance(minutes=16)
    result = await handler.handle(succeeded("pay_late", hold_id))

    assert result.outcome == ConfirmationOutcome.EXPIRED
    assert result.message == "Slot no longer available"
    assert await _count_orders(test_db, "pay_late") == 0

    view = await holds.get_hold(hold_id)
    assert view.status == ReservationStatus.EXPIRED
    table = await _table(test_db, seed.table_id)
    assert table.status == TableStatus.AVAILABLE


@pytest.mark.asyncio
async def test_payment_at_exact_expiry_is_rejected(handler, holds, seed, clock):
    """Test a hold is already expired at the instant expires_at is reached"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    clock.advance(minutes=15)
    result = await handler.handle(succeeded("pay_edge", hold_id))

    assert result.outcome == ConfirmationOutcome.EXPIRED


@pytest.mark.asyncio
async def test_second_hold_loses_the_slot(handler, holds, test_db, seed):
    """Test only one of two overlapping holds can be confirmed"""
    first = await holds.create_hold(hold_request(seed))
    first_id = first.id
    second = await holds.create_hold(hold_request(seed, customer_name="Grace Hopper"))
    second_id = second.id

    won = await handler.handle(succeeded("pay_A", first_id))
    lost = await handler.handle(succeeded("pay_B", second_id))

    assert won.outcome == ConfirmationOutcome.CONFIRMED
    assert lost.outcome == ConfirmationOutcome.CONFLICT
    assert lost.message == "Time slot no longer available"
    assert await _count_orders(test_db, "pay_B") == 0

    # The losing hold is left to expire on its own
    loser = await holds.load(second_id)
    assert loser.status == ReservationStatus.TENTATIVE
    assert loser.payment_reference is None


@pytest.mark.asyncio
async def test_other_payment_for_confirmed_reservation(handler, holds, seed):
    """Test a different payment for an already confirmed reservation is an anomaly"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id
    await handler.handle(succeeded("pay_first", hold_id))

    result = await handler.handle(succeeded("pay_second", hold_id))

    assert result.outcome == ConfirmationOutcome.ANOMALY
    reservation = await holds.load(hold_id)
    assert reservation.payment_reference == "pay_first"


@pytest.mark.asyncio
async def test_payment_for_cancelled_hold(handler, holds, test_db, seed, clock):
    """Test a payment for a hold the guest already cancelled changes nothing"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id
    await CancellationPolicyEnforcer(test_db, clock).cancel(hold_id)

    result = await handler.handle(succeeded("pay_cancelled", hold_id))

    assert result.outcome == ConfirmationOutcome.ANOMALY
    reservation = await holds.load(hold_id)
    assert reservation.status == ReservationStatus.CANCELLED
    assert await _count_orders(test_db, "pay_cancelled") == 0


@pytest.mark.asyncio
async def test_payment_for_unknown_reservation(handler, seed):
    """Test a payment naming an unknown reservation is reported, not raised"""
    result = await handler.handle(succeeded("pay_ghost", uuid4()))

    assert result.outcome == ConfirmationOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_pre_order_items_are_materialized(handler, holds, test_db, seed):
    """Test cart contents on the payment become a priced pre-order"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    order_spec = OrderCreate(
        restaurant_id=seed.restaurant_id,
        reservation_id=hold_id,
        order_type=OrderType.PRE_ORDER,
        items=[
            OrderItemCreate(menu_item_id=seed.burger_id, quantity=2),
            OrderItemCreate(menu_item_id=seed.salad_id, quantity=1, special_instructions="no onions"),
        ],
        tip_cents=300,
    )
    result = await handler.handle(succeeded("pay_pre", hold_id, order=order_spec, amount_cents=4200))

    assert result.outcome == ConfirmationOutcome.CONFIRMED
    order = result.order
    assert order.reservation_id == hold_id
    assert order.table_id == seed.table_id
    assert order.customer_name == "Ada Lovelace"
    assert order.subtotal_cents == 1500 * 2 + 900
    assert order.total_cents == 1500 * 2 + 900 + 300
    assert order.payment_amount_cents == 4200
    assert result.reservation.has_pre_order is True


@pytest.mark.asyncio
async def test_failed_payment_leaves_hold_alone(handler, holds, seed):
    """Test a failed payment does not touch the hold"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    result = await handler.handle(failed("pay_declined", hold_id))

    assert result.outcome == ConfirmationOutcome.IGNORED
    reservation = await holds.load(hold_id)
    assert reservation.status == ReservationStatus.TENTATIVE


@pytest.mark.asyncio
async def test_failure_then_success_settles_order(handler, test_db, seed, clock):
    """Test an order created before payment follows the payment outcome and never regresses"""
    materializer = OrderMaterializer(test_db, clock)
    await materializer.materialize("pay_cart", OrderCreate(
        restaurant_id=seed.restaurant_id,
        table_id=seed.table_id,
        items=[OrderItemCreate(menu_item_id=seed.burger_id)],
    ))

    failure = await handler.handle(failed("pay_cart"))
    assert failure.outcome == ConfirmationOutcome.FAILURE_RECORDED
    order = await materializer.get_by_payment_reference("pay_cart")
    assert order.payment_status == PaymentStatus.FAILED

    success = await handler.handle(succeeded("pay_cart"))
    assert success.outcome == ConfirmationOutcome.ORDER_ONLY
    assert success.order.payment_status == PaymentStatus.COMPLETED

    late_failure = await handler.handle(failed("pay_cart"))
    assert late_failure.outcome == ConfirmationOutcome.IGNORED
    order = await materializer.get_by_payment_reference("pay_cart")
    assert order.payment_status == PaymentStatus.COMPLETED


@pytest.mark.asyncio
async def test_dine_in_payment_without_reservation(handler, test_db, seed):
    """Test a dine-in payment carrying its cart creates the order once"""
    order_spec = OrderCreate(
        restaurant_id=seed.restaurant_id,
        table_id=seed.table_id,
        order_type=OrderType.DINE_IN,
        items=[OrderItemCreate(menu_item_id=seed.salad_id, quantity=3)],
    )

    first = await handler.handle(succeeded("pay_table", order=order_spec, amount_cents=2700))
    first_order_id = first.order.id
    again = await handler.handle(succeeded("pay_table", order=order_spec, amount_cents=2700))

    assert first.outcome == ConfirmationOutcome.ORDER_ONLY
    assert first.order.total_cents == 2700
    assert first.order.payment_status == PaymentStatus.COMPLETED
    assert again.order.id == first_order_id
    assert await _count_orders(test_db, "pay_table") == 1


@pytest.mark.asyncio
async def test_payment_without_anything_to_apply(handler, seed):
    """Test a bare payment with no reservation or cart is ignored"""
    result = await handler.handle(succeeded("pay_nothing"))

    assert result.outcome == ConfirmationOutcome.IGNORED


@pytest.mark.asyncio
async def test_invalid_cart_does_not_undo_confirmation(handler, holds, test_db, seed):
    """Test the reservation stays confirmed when its cart cannot be materialized"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    order_spec = OrderCreate(
        restaurant_id=seed.restaurant_id,
        reservation_id=hold_id,
        order_type=OrderType.PRE_ORDER,
        items=[OrderItemCreate(menu_item_id=seed.sold_out_id)],
    )
    result = await handler.handle(succeeded("pay_sold_out", hold_id, order=order_spec))

    assert result.outcome == ConfirmationOutcome.CONFIRMED
    assert result.order is None
    assert result.reservation.status == ReservationStatus.CONFIRMED
    assert await _count_orders(test_db, "pay_sold_out") == 0


@pytest.mark.asyncio
async def test_failure_after_confirmation_keeps_reservation(handler, holds, test_db, seed):
    """Test a failed event trailing the confirming payment changes nothing"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id
    confirmed = await handler.handle(succeeded("pay_123", hold_id))
    order_id = confirmed.order.id

    result = await handler.handle(failed("pay_123", hold_id))

    assert result.outcome == ConfirmationOutcome.IGNORED
    reservation = await holds.load(hold_id)
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.payment_reference == "pay_123"

    order = await OrderMaterializer(test_db).get_by_payment_reference("pay_123")
    assert order.id == order_id
    assert order.payment_status == PaymentStatus.COMPLETED


async def _bump_table(db, table_id):
    await db.execute(
        update(DiningTable)
        .where(DiningTable.id == table_id)
        .values(version=DiningTable.version + 1)
        .execution_options(synchronize_session=False)
    )


def _interleave(monkeypatch, handler, competing_write, times=1):
    """Run ``competing_write`` right after the slot check, as a concurrent writer would"""
    check = handler.conflicts.has_conflict
    calls = []

    async def has_conflict(*args, **kwargs):
        calls.append(args)
        found = await check(*args, **kwargs)
        if len(calls) <= times:
            await competing_write()
            await handler.db.commit()
        return found

    monkeypatch.setattr(handler.conflicts, "has_conflict", has_conflict)
    return calls


@pytest.mark.asyncio
async def test_duplicate_wins_the_conditional_write(handler, holds, test_db, seed, notifier, monkeypatch):
    """Test losing the hold write to the same payment reports already confirmed"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    async def duplicate_confirms():
        await test_db.execute(
            update(Reservation)
            .where(Reservation.id == hold_id)
            .values(status=ReservationStatus.CONFIRMED, payment_reference="pay_123", expires_at=None)
            .execution_options(synchronize_session=False)
        )

    calls = _interleave(monkeypatch, handler, duplicate_confirms)
    result = await handler.handle(succeeded("pay_123", hold_id))

    assert len(calls) == 1
    assert result.outcome == ConfirmationOutcome.ALREADY_CONFIRMED
    assert result.reservation.status == ReservationStatus.CONFIRMED
    assert result.order is not None
    assert await _count_orders(test_db, "pay_123") == 1
    assert notifier.on("admin") == []


@pytest.mark.asyncio
async def test_table_change_is_retried(handler, holds, test_db, seed, monkeypatch):
    """Test a table touched mid-confirmation is re-read and the confirmation retried"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    calls = _interleave(monkeypatch, handler, lambda: _bump_table(test_db, seed.table_id))
    result = await handler.handle(succeeded("pay_123", hold_id))

    assert len(calls) == 2
    assert result.outcome == ConfirmationOutcome.CONFIRMED
    assert await _count_orders(test_db, "pay_123") == 1
    table = await _table(test_db, seed.table_id)
    assert table.version == 2
    assert table.status == TableStatus.RESERVED


@pytest.mark.asyncio
async def test_concurrent_confirmation_takes_the_slot(handler, holds, test_db, seed, monkeypatch):
    """Test a rival confirmed between the slot check and the table write wins"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id
    rival = await holds.create_hold(hold_request(seed, customer_name="Grace Hopper"))
    rival_id = rival.id

    async def rival_confirms():
        await test_db.execute(
            update(Reservation)
            .where(Reservation.id == rival_id)
            .values(status=ReservationStatus.CONFIRMED, payment_reference="pay_rival", expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await _bump_table(test_db, seed.table_id)

    calls = _interleave(monkeypatch, handler, rival_confirms)
    result = await handler.handle(succeeded("pay_123", hold_id))

    assert len(calls) == 2
    assert result.outcome == ConfirmationOutcome.CONFLICT
    assert await _count_orders(test_db, "pay_123") == 0

    reservation = await holds.load(hold_id)
    assert reservation.status == ReservationStatus.TENTATIVE
    assert reservation.payment_reference is None
    assert (await holds.load(rival_id)).status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_confirmation_gives_up_under_contention(test_db, holds, seed, clock, notifier, monkeypatch):
    """Test a table that keeps changing ends in a conflict after the attempt limit"""
    handler = PaymentConfirmationHandler(test_db, notifier, clock, max_attempts=2)
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    calls = _interleave(monkeypatch, handler, lambda: _bump_table(test_db, seed.table_id), times=2)
    result = await handler.handle(succeeded("pay_123", hold_id))

    assert len(calls) == 2
    assert result.outcome == ConfirmationOutcome.CONFLICT
    assert (await holds.load(hold_id)).status == ReservationStatus.TENTATIVE
    assert await _count_orders(test_db, "pay_123") == 0


@pytest.mark.asyncio
async def test_payment_after_verification_extension(handler, holds, seed, clock):
    """Test a payment finishing past the original TTL lands when the hold was verified first"""
    hold = await holds.create_hold(hold_request(seed))
    hold_id = hold.id

    clock.advance(minutes=14)
    await holds.verify_for_payment(hold_id)
    clock.advance(minutes=3)
    result = await handler.handle(succeeded("pay_slow", hold_id))

    assert result.outcome == ConfirmationOutcome.CONFIRMED
