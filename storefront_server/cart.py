"""Client-held shopping cart with persistence."""

import logging
from decimal import Decimal
from typing import Callable, Literal, Optional, Union

from pydantic import BaseModel, ValidationError

from .models import CartItem, CartState, Product
from .storage import PersistentStore

logger = logging.getLogger(__name__)


class AddItem(BaseModel):
    type: Literal["add_item"] = "add_item"
    product: Product


class RemoveItem(BaseModel):
    type: Literal["remove_item"] = "remove_item"
    id: str


class UpdateQuantity(BaseModel):
    type: Literal["update_quantity"] = "update_quantity"
    id: str
    quantity: int


class ClearCart(BaseModel):
    type: Literal["clear_cart"] = "clear_cart"


class SetShippingAddress(BaseModel):
    type: Literal["set_shipping_address"] = "set_shipping_address"
    address: str


class SetNotes(BaseModel):
    type: Literal["set_notes"] = "set_notes"
    notes: str


CartAction = Union[AddItem, RemoveItem, UpdateQuantity, ClearCart, SetShippingAddress, SetNotes]

CartListener = Callable[[CartState], None]


def _without(items: dict[str, CartItem], item_id: str) -> dict[str, CartItem]:
    return {key: item for key, item in items.items() if key != item_id}


def reduce_cart(state: CartState, action: CartAction) -> CartState:
    """Return the state that results from applying ``action``; ``state`` is not modified."""
    if isinstance(action, AddItem):
        product = action.product
        existing = state.items.get(product.id)
        quantity = existing.quantity + 1 if existing else 1
        items = dict(state.items)
        items[product.id] = CartItem(
            id=product.id,
            name=product.name,
            unit_price=product.unit_price,
            quantity=quantity,
        )
        return state.model_copy(update={"items": items})

    if isinstance(action, RemoveItem):
        return state.model_copy(update={"items": _without(state.items, action.id)})

    if isinstance(action, UpdateQuantity):
        if action.quantity <= 0:
            return state.model_copy(update={"items": _without(state.items, action.id)})
        existing = state.items.get(action.id)
        if existing is None:
            return state
        items = dict(state.items)
        items[action.id] = existing.model_copy(update={"quantity": action.quantity})
        return state.model_copy(update={"items": items})

    if isinstance(action, ClearCart):
        return state.model_copy(update={"items": {}})

    if isinstance(action, SetShippingAddress):
        return state.model_copy(update={"shipping_address": action.address})

    if isinstance(action, SetNotes):
        return state.model_copy(update={"notes": action.notes})

    raise TypeError(f"Unknown cart action: {action!r}")


class CartStore:
    """Owns the cart contents and persists every committed change."""

    STORAGE_KEY = "cart"

    def __init__(self, store: PersistentStore) -> None:
        self.store = store
        self._listeners: list[CartListener] = []
        self._state = self._restore()

    def _restore(self) -> CartState:
        """Load the saved cart; anything missing or malformed yields an empty cart."""
        raw = self.store.get(self.STORAGE_KEY)
        if raw is None:
            return CartState()
        try:
            state = CartState.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed saved cart: {e.error_count()} error(s)")
            return CartState()
        logger.info(f"Restored cart with {state.count} item(s)")
        return state

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def items(self) -> list[CartItem]:
        return list(self._state.items.values())

    @property
    def cart_count(self) -> int:
        return self._state.count

    @property
    def cart_total(self) -> Decimal:
        return self._state.total

    @property
    def shipping_address(self) -> str:
        return self._state.shipping_address

    @property
    def notes(self) -> str:
        return self._state.notes

    def is_empty(self) -> bool:
        return not self._state.items

    def snapshot(self) -> CartState:
        return self._state.model_copy(deep=True)

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: CartAction) -> CartState:
        new_state = reduce_cart(self._state, action)
        if new_state is self._state:
            return self._state
        self.store.set(self.STORAGE_KEY, new_state.model_dump(mode="json"))
        self._state = new_state
        logger.debug(f"Cart {action.type}: count={new_state.count} total={new_state.total}")
        for listener in list(self._listeners):
            listener(new_state)
        return new_state

    def add_item(self, product: Product) -> CartState:
        return self.dispatch(AddItem(product=product))

    def remove_item(self, item_id: str) -> CartState:
        return self.dispatch(RemoveItem(id=item_id))

    def update_quantity(self, item_id: str, quantity: int) -> CartState:
        return self.dispatch(UpdateQuantity(id=item_id, quantity=quantity))

    def clear_cart(self) -> CartState:
        return self.dispatch(ClearCart())

    def set_shipping_address(self, address: str) -> CartState:
        return self.dispatch(SetShippingAddress(address=address))

    def set_notes(self, notes: str) -> CartState:
        return self.dispatch(SetNotes(notes=notes))

    def get_item(self, item_id: str) -> Optional[CartItem]:
        return self._state.items.get(item_id)
