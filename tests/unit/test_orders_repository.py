from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from bag2go.errors import ConflictError, InvariantViolation
from bag2go.orders.models import BookingRequest, OrderStatus, new_order
from bag2go.orders.repository import SupabaseOrderStore


def _row(order, **overrides):
    row = order.model_dump(mode="json")
    row.update({"dispatch_claim": None, "dispatch_lease_until": None})
    row.update(overrides)
    return row

@pytest.fixture
def sample_order(booking_payload):
    return new_order(BookingRequest.model_validate(booking_payload()), 2, user_id="u1")

@pytest.fixture
def client():
    # Chaîne PostgREST simulée: client.table(...) renvoie toujours la même table mockée
    return MagicMock()

@pytest.fixture
def table(client):
    return client.table.return_value

@pytest.fixture
def repo(client):
    return SupabaseOrderStore(client_factory=lambda: client)

def _select_returns(table, rows):
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=rows)


def test_get_order_maps_row_with_sorted_bags(repo, table, sample_order):
    row = _row(sample_order)
    row["bags"] = list(reversed(row["bags"]))
    _select_returns(table, [row])

    order = repo.get_order(sample_order.id)
    assert order.id == sample_order.id
    assert [b.position for b in order.bags] == [1, 2]
    table.select.assert_called_with("*, bags(*)")

def test_get_order_with_malformed_id_skips_query(repo, client):
    assert repo.get_order("nope") is None
    client.table.assert_not_called()

def test_update_status_is_a_conditional_update(repo, table, sample_order):
    update_chain = table.update.return_value.eq.return_value.eq.return_value
    update_chain.execute.return_value = MagicMock(data=[{"id": sample_order.id}])
    _select_returns(table, [_row(sample_order, status="PAYMENT_CONFIRMED")])

    order = repo.update_status(sample_order.id, OrderStatus.PENDING, OrderStatus.PAYMENT_CONFIRMED)

    assert order.status == OrderStatus.PAYMENT_CONFIRMED
    assert table.update.call_args[0][0]["status"] == "PAYMENT_CONFIRMED"
    table.update.return_value.eq.assert_called_with("id", sample_order.id)
    table.update.return_value.eq.return_value.eq.assert_called_with("status", "PENDING")

def test_update_status_conflict_reports_actual_status(repo, table, sample_order):
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(data=[])
    _select_returns(table, [_row(sample_order, status="NOTIFIED")])

    with pytest.raises(ConflictError) as exc:
        repo.update_status(sample_order.id, OrderStatus.PENDING, OrderStatus.PAYMENT_CONFIRMED)
    assert exc.value.actual == OrderStatus.NOTIFIED

def test_set_notifier_message_id_only_when_null(repo, table, sample_order):
    table.update.return_value.eq.return_value.is_.return_value.execute.return_value = MagicMock(data=[{"id": sample_order.id}])
    _select_returns(table, [_row(sample_order, notifier_message_id="msg-1")])

    order = repo.set_notifier_message_id(sample_order.id, "msg-1")
    assert order.notifier_message_id == "msg-1"
    table.update.return_value.eq.return_value.is_.assert_called_with("notifier_message_id", "null")

def test_set_notifier_message_id_conflicting_value(repo, table, sample_order):
    table.update.return_value.eq.return_value.is_.return_value.execute.return_value = MagicMock(data=[])
    _select_returns(table, [_row(sample_order, notifier_message_id="msg-1")])

    with pytest.raises(InvariantViolation):
        repo.set_notifier_message_id(sample_order.id, "msg-2")

def test_create_order_rolls_back_when_bags_insert_fails(repo, table, booking_payload):
    table.insert.return_value.execute.side_effect = [MagicMock(data=[{}]), RuntimeError("bags insert failed")]

    with pytest.raises(RuntimeError):
        repo.create_order(BookingRequest.model_validate(booking_payload()), 2, user_id="u1")

    assert table.insert.call_count == 2
    bag_rows = table.insert.call_args_list[1][0][0]
    assert len(bag_rows) == 2
    assert table.delete.return_value.eq.call_args[0][0] == "id"

def test_claim_dispatch_uses_lease_filter(repo, table, sample_order):
    chain = table.update.return_value.eq.return_value.or_.return_value
    chain.execute.return_value = MagicMock(data=[{"id": sample_order.id}])
    assert repo.claim_dispatch(sample_order.id, "claimant-1", 60) is True

    filter_arg = table.update.return_value.eq.return_value.or_.call_args[0][0]
    assert "dispatch_lease_until.is.null" in filter_arg
    assert "dispatch_claim.eq.claimant-1" in filter_arg

    chain.execute.return_value = MagicMock(data=[])
    assert repo.claim_dispatch(sample_order.id, "claimant-2", 60) is False

def test_list_orders_by_status_filters_and_limits(repo, table, sample_order):
    chain = table.select.return_value.in_.return_value.order.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[_row(sample_order, status="NOTIFY_FAILED")])

    orders = repo.list_orders_by_status([OrderStatus.NOTIFY_FAILED], limit=5)
    assert [o.status for o in orders] == [OrderStatus.NOTIFY_FAILED]
    table.select.return_value.in_.assert_called_with("status", ["NOTIFY_FAILED"])
    table.select.return_value.in_.return_value.order.return_value.limit.assert_called_with(5)

def test_list_abandoned_orders_filters_in_query(repo, table, sample_order):
    eq_chain = table.select.return_value.eq.return_value
    chain = eq_chain.is_.return_value.lt.return_value.order.return_value.limit.return_value
    chain.execute.return_value = MagicMock(data=[_row(sample_order)])
    cutoff = datetime(2026, 11, 2, 8, 0, 0, tzinfo=timezone.utc)

    orders = repo.list_abandoned_orders(cutoff, limit=20)

    assert [o.id for o in orders] == [sample_order.id]
    table.select.return_value.eq.assert_called_with("status", "PENDING")
    eq_chain.is_.assert_called_with("payment_ref", "null")
    eq_chain.is_.return_value.lt.assert_called_with("created_at", "2026-11-02T08:00:00Z")
    eq_chain.is_.return_value.lt.return_value.order.return_value.limit.assert_called_with(20)
