import pytest

from cart import Cart, CartRegistry
from config import TAX_RATE


def test_add_item_creates_line_then_increments(nasi_goreng):
    cart = Cart()
    cart.add_item(nasi_goreng)
    line = cart.add_item(nasi_goreng)

    assert line.quantity == 2
    assert len(cart) == 1
    assert cart.item_count == 2


def test_add_item_is_not_capped_by_stock(nasi_goreng):
    cart = Cart()
    for _ in range(nasi_goreng.stock + 3):
        cart.add_item(nasi_goreng)

    assert cart.get(nasi_goreng.id).quantity == nasi_goreng.stock + 3


def test_change_quantity_to_zero_removes_line(nasi_goreng, es_teh):
    cart = Cart()
    cart.add_item(nasi_goreng)
    cart.add_item(es_teh)

    assert cart.change_quantity(nasi_goreng.id, -1) == 0
    assert cart.get(nasi_goreng.id) is None
    assert [line.product_id for line in cart.lines()] == [es_teh.id]


def test_change_quantity_never_goes_negative(nasi_goreng):
    cart = Cart()
    cart.add_item(nasi_goreng)
    cart.change_quantity(nasi_goreng.id, 2)

    assert cart.change_quantity(nasi_goreng.id, -10) == 0
    assert cart.is_empty


def test_change_quantity_unknown_product_is_ignored():
    cart = Cart()
    assert cart.change_quantity('missing', 1) == 0
    assert cart.is_empty


@pytest.mark.parametrize('quantities', [{'A': 1}, {'A': 2, 'B': 1}, {'A': 7, 'B': 13}])
def test_total_is_subtotal_plus_ten_percent(nasi_goreng, es_teh, quantities):
    products = {'A': nasi_goreng, 'B': es_teh}
    cart = Cart()
    for pid, qty in quantities.items():
        for _ in range(qty):
            cart.add_item(products[pid])

    expected_subtotal = sum(products[pid].price * qty for pid, qty in quantities.items())
    assert cart.subtotal() == expected_subtotal
    assert cart.total() == cart.subtotal() * 1.1
    assert cart.tax() == pytest.approx(expected_subtotal * TAX_RATE)


def test_empty_cart_totals_are_zero():
    cart = Cart()
    assert cart.subtotal() == 0
    assert cart.total() == 0


def test_clear_and_remove(nasi_goreng, es_teh):
    cart = Cart()
    cart.add_item(nasi_goreng)
    cart.add_item(es_teh)
    cart.remove_item(nasi_goreng.id)
    assert len(cart) == 1
    cart.clear()
    assert cart.is_empty


def test_registry_keeps_one_cart_per_session(nasi_goreng):
    registry = CartRegistry()
    registry.get(1).add_item(nasi_goreng)

    assert registry.get('1').item_count == 1
    assert registry.get(2).is_empty

    registry.discard(1)
    assert registry.get(1).is_empty
