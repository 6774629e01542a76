from datetime import datetime
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from errors import NotFoundError, PersistenceError, ValidationError
from models import (UNKNOWN_CATEGORY, Category, PaymentMethod, Product, TransactionHeader,
                    TransactionLineItem)
from repository import PRODUCTS, TRANSACTIONS, SqlRepository


def header(transaction_id, day, total=11000.0, method=PaymentMethod.CASH):
    return TransactionHeader(id=transaction_id, date=datetime(2026, 10, day, 10, 0),
                             total=total, payment_method=method)


def test_list_products_newest_first(stocked_repository):
    assert [p.id for p in stocked_repository.list_products()] == ['B', 'A']


def test_create_product_generates_id_when_missing(repository):
    created = repository.create_product(
        Product(id='', name='Burger Sapi', price=35000, category=Category.FOOD.value, stock=25))

    assert created.id
    assert repository.get_product(created.id).name == 'Burger Sapi'
    assert created.created_at is not None


def test_update_product(stocked_repository):
    updated = stocked_repository.update_product('A', price=27000, stock=9)

    assert updated.price == 27000
    assert updated.stock == 9
    assert updated.name == 'Nasi Goreng Spesial'


def test_update_missing_product_raises_not_found(repository):
    with pytest.raises(NotFoundError):
        repository.update_product('nope', stock=1)


def test_update_rejects_unknown_fields_and_negative_stock(stocked_repository):
    with pytest.raises(ValidationError):
        stocked_repository.update_product('A', colour='red')
    with pytest.raises(ValidationError):
        stocked_repository.update_product('A', stock=-1)


def test_delete_product_twice_raises_not_found(stocked_repository):
    stocked_repository.delete_product('A')
    with pytest.raises(NotFoundError):
        stocked_repository.delete_product('A')


def test_product_stock_roundtrip(stocked_repository):
    stocked_repository.set_product_stock('B', 42)
    assert stocked_repository.get_product_stock('B') == 42

    with pytest.raises(NotFoundError):
        stocked_repository.get_product_stock('nope')
    with pytest.raises(NotFoundError):
        stocked_repository.set_product_stock('nope', 1)


def test_transactions_newest_date_first_with_items(repository):
    repository.create_transaction_header(header('t1', 17))
    repository.create_transaction_header(header('t2', 18, method=PaymentMethod.QRIS))
    repository.create_transaction_items([
        TransactionLineItem('t1', 'A', 'Nasi Goreng Spesial', 2, 25000),
        TransactionLineItem('t2', 'B', 'Teh Manis Dingin', 1, 5000),
    ])

    transactions = repository.list_transactions()

    assert [t.id for t in transactions] == ['t2', 't1']
    assert transactions[0].payment_method is PaymentMethod.QRIS
    assert transactions[1].items[0].quantity == 2


def test_historical_items_backfill_category_and_image(repository):
    repository.create_transaction_header(header('t1', 17))
    repository.create_transaction_items([TransactionLineItem('t1', 'A', 'Nasi Goreng Spesial', 1, 25000)])

    [item] = repository.list_transactions()[0].items

    assert item.product.category == UNKNOWN_CATEGORY
    assert item.product.image == ''
    assert item.product.stock == 0


def test_duplicate_header_raises_persistence_error(repository):
    repository.create_transaction_header(header('t1', 17))

    with pytest.raises(PersistenceError) as excinfo:
        repository.create_transaction_header(header('t1', 18))

    assert excinfo.value.stage == 'header'
    assert excinfo.value.detail
    assert excinfo.value.hint


def test_delete_transaction_removes_items(repository):
    repository.create_transaction_header(header('t1', 17))
    repository.create_transaction_items([TransactionLineItem('t1', 'A', 'Nasi', 1, 25000)])

    repository.delete_transaction('t1')

    assert repository.list_transactions() == []


def test_operational_error_is_wrapped():
    session = Mock()
    session.query.side_effect = OperationalError('SELECT', {}, Exception('no such table: products'))
    repository = SqlRepository(lambda: session)

    with pytest.raises(PersistenceError) as excinfo:
        repository.list_products()

    assert excinfo.value.stage == 'read'
    assert 'no such table' in excinfo.value.detail
    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_subscribers_receive_fresh_snapshots(stocked_repository):
    received = []
    unsubscribe = stocked_repository.subscribe(PRODUCTS, received.append)

    stocked_repository.set_product_stock('A', 1)
    unsubscribe()
    stocked_repository.set_product_stock('A', 2)

    assert len(received) == 1
    assert {p.id: p.stock for p in received[0]}['A'] == 1


def test_failing_subscriber_does_not_break_writes(repository):
    repository.subscribe(TRANSACTIONS, Mock(side_effect=RuntimeError('ui down')))

    repository.create_transaction_header(header('t1', 17))

    assert [t.id for t in repository.list_transactions()] == ['t1']


def test_subscribe_rejects_unknown_kind(repository):
    with pytest.raises(ValueError):
        repository.subscribe('customers', print)


def test_batched_notifications_send_one_snapshot_per_kind(stocked_repository):
    received = []
    stocked_repository.subscribe(PRODUCTS, received.append)

    with stocked_repository.batched_notifications():
        stocked_repository.set_product_stock('A', 1)
        stocked_repository.set_product_stock('B', 2)
        assert received == []

    assert len(received) == 1
    assert {p.id: p.stock for p in received[0]} == {'A': 1, 'B': 2}
