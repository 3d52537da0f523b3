import pytest
from pydantic import ValidationError

from cart import Add, Cart, CartItem, CartState, Clear, Remove, cart_reducer


def item(product_id, price, quantity, color=None, size=None):
    return CartItem(product_id=product_id, title=product_id.upper(), price=price, quantity=quantity, color=color, size=size)


def test_total_follows_every_transition():
    cart = Cart()
    cart.add(item("a", 10, 2))
    cart.add(item("b", 5, 1))
    assert cart.total == 25

    cart.update_quantity("a", 3)
    assert cart.total == 35

    cart.remove("b")
    assert cart.total == 30
    assert [i.product_id for i in cart.items] == ["a"]


def test_add_same_variant_increments_quantity():
    cart = Cart()
    cart.add(item("a", 10, 1, color="red", size="M"))
    cart.add(item("a", 10, 2, color="red", size="M"))

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.total == 30


def test_add_different_variant_creates_new_row():
    cart = Cart()
    cart.add(item("a", 10, 1, color="red", size="M"))
    cart.add(item("a", 10, 1, color="blue", size="M"))
    cart.add(item("a", 10, 1, color="red", size="L"))

    assert len(cart.items) == 3
    assert cart.total == 30


def test_remove_by_id_drops_every_variant():
    cart = Cart.from_items([item("a", 10, 1, size="M"), item("a", 10, 1, size="L"), item("b", 4, 1)])

    cart.remove("a")

    assert [i.product_id for i in cart.items] == ["b"]
    assert cart.total == 4


def test_remove_can_target_a_single_variant():
    cart = Cart.from_items([item("a", 10, 1, size="M"), item("a", 12, 1, size="L")])

    cart.remove("a", size="L")

    assert len(cart.items) == 1
    assert cart.items[0].size == "M"
    assert cart.total == 10


def test_update_quantity_is_not_clamped():
    cart = Cart.from_items([item("a", 10, 2)])

    cart.update_quantity("a", 0)

    assert cart.items[0].quantity == 0
    assert cart.total == 0


def test_clear_empties_cart():
    cart = Cart.from_items([item("a", 10, 2), item("b", 5, 1)])

    cart.clear()

    assert cart.items == ()
    assert cart.total == 0


def test_reducer_does_not_mutate_previous_state():
    first = cart_reducer(CartState(), Add(item=item("a", 10, 1)))
    second = cart_reducer(first, Add(item=item("a", 10, 1)))

    assert first.items[0].quantity == 1
    assert second.items[0].quantity == 2
    assert cart_reducer(second, Clear()) == CartState()


def test_removing_unknown_id_keeps_state():
    state = cart_reducer(CartState(), Add(item=item("a", 10, 1)))
    assert cart_reducer(state, Remove(product_id="zzz")) == state


def test_unknown_action_raises():
    with pytest.raises(TypeError):
        cart_reducer(CartState(), "ADD_ITEM")


def test_cart_quote_merges_lines_and_adds_shipping_and_tax(client, cart_lines):
    lines = cart_lines + [{"product_id": "a", "title": "Linen Shirt", "price": 10.0, "quantity": 1, "size": "M"}]

    response = client.post("/api/cart/quote", json={"items": lines})

    assert response.status_code == 200
    body = response.json()
    assert len(body["items"]) == 2
    assert body["items"][0]["quantity"] == 3
    assert body["subtotal"] == 35
    assert body["shipping_cost"] == 10
    assert body["tax"] == 2.8
    assert body["total_amount"] == 47.8


def test_cart_quote_rejects_zero_quantity(client):
    response = client.post(
        "/api/cart/quote",
        json={"items": [{"product_id": "a", "title": "A", "price": 1, "quantity": 0}]},
    )
    assert response.status_code == 422


def test_cart_values_are_immutable():
    line = item("a", 10, 1)
    with pytest.raises(ValidationError):
        line.quantity = 5
    with pytest.raises(ValidationError):
        CartState().total = 3
