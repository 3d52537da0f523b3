"""
Cart state reducer.

The cart is never persisted. State is an ordered tuple of line items plus a
total that is recomputed from the items after every action.
"""
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CartItem(_Frozen):
    product_id: str
    title: str
    price: float
    quantity: int
    image: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None

    @property
    def key(self):
        return (self.product_id, self.color, self.size)


class CartState(_Frozen):
    items: Tuple[CartItem, ...] = ()
    total: float = 0.0


class Add(_Frozen):
    item: CartItem


class Remove(_Frozen):
    product_id: str
    color: Optional[str] = None
    size: Optional[str] = None


class UpdateQuantity(_Frozen):
    product_id: str
    quantity: int
    color: Optional[str] = None
    size: Optional[str] = None


class Clear(_Frozen):
    pass


def calculate_total(items: Iterable[CartItem]) -> float:
    return sum(item.price * item.quantity for item in items)


def _matches(item: CartItem, product_id: str, color: Optional[str], size: Optional[str]) -> bool:
    # color/size narrow the match only when given
    if item.product_id != product_id:
        return False
    if color is not None and item.color != color:
        return False
    if size is not None and item.size != size:
        return False
    return True


def _state(items) -> CartState:
    items = tuple(items)
    return CartState(items=items, total=calculate_total(items))


def cart_reducer(state: CartState, action) -> CartState:
    if isinstance(action, Add):
        incoming = action.item
        for index, item in enumerate(state.items):
            if item.key == incoming.key:
                merged = item.model_copy(update={"quantity": item.quantity + incoming.quantity})
                return _state(state.items[:index] + (merged,) + state.items[index + 1:])
        return _state(state.items + (incoming,))

    if isinstance(action, Remove):
        return _state(i for i in state.items if not _matches(i, action.product_id, action.color, action.size))

    if isinstance(action, UpdateQuantity):
        # no clamping here, callers keep quantity >= 1
        return _state(
            i.model_copy(update={"quantity": action.quantity}) if _matches(i, action.product_id, action.color, action.size) else i
            for i in state.items
        )

    if isinstance(action, Clear):
        return CartState()

    raise TypeError(f"Unknown cart action: {action!r}")


class Cart:
    """Mutable convenience wrapper that dispatches actions through the reducer."""

    def __init__(self, state: Optional[CartState] = None):
        self.state = state if state is not None else CartState()

    @classmethod
    def from_items(cls, items: Iterable[CartItem]) -> "Cart":
        cart = cls()
        for item in items:
            cart.add(item)
        return cart

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return self.state.items

    @property
    def total(self) -> float:
        return self.state.total

    def dispatch(self, action) -> CartState:
        self.state = cart_reducer(self.state, action)
        return self.state

    def add(self, item: CartItem) -> CartState:
        return self.dispatch(Add(item=item))

    def remove(self, product_id: str, color: Optional[str] = None, size: Optional[str] = None) -> CartState:
        return self.dispatch(Remove(product_id=product_id, color=color, size=size))

    def update_quantity(self, product_id: str, quantity: int, color: Optional[str] = None, size: Optional[str] = None) -> CartState:
        return self.dispatch(UpdateQuantity(product_id=product_id, quantity=quantity, color=color, size=size))

    def clear(self) -> CartState:
        return self.dispatch(Clear())

    def to_dicts(self):
        return [
            {
                "product_id": i.product_id,
                "title": i.title,
                "price": i.price,
                "quantity": i.quantity,
                "image": i.image,
                "color": i.color,
                "size": i.size,
            }
            for i in self.items
        ]
