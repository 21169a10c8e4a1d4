"""Data models for the storefront session."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Product(BaseModel):
    """A product as handed to the cart by the catalog."""

    id: str = Field(description="Product identifier")
    name: str = Field(description="Product name")
    unit_price: Decimal = Field(gt=0, description="Unit price")


class CartItem(BaseModel):
    """Represents an item in the shopping cart."""

    id: str = Field(description="Product identifier, unique within the cart")
    name: str
    unit_price: Decimal = Field(gt=0)
    quantity: int = Field(ge=1, description="Quantity of the product")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class CartState(BaseModel):
    """Cart contents plus the checkout-adjacent fields."""

    items: dict[str, CartItem] = Field(default_factory=dict, description="Cart items by product id")
    shipping_address: str = ""
    notes: str = ""

    @property
    def count(self) -> int:
        return sum(item.quantity for item in self.items.values())

    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self.items.values()), Decimal("0"))


class AuthCredentials(BaseModel):
    """Authentication credentials."""

    email: str
    password: str


class TokenPair(BaseModel):
    """Access/refresh token pair returned by the login endpoint."""

    access: str
    refresh: str


class UserProfile(BaseModel):
    """Authenticated user snapshot."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Totals(BaseModel):
    """Authoritative totals breakdown from the payment-intent response."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal


class OrderItem(BaseModel):
    """Represents an item in an order."""

    model_config = ConfigDict(extra="allow")

    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    price: Decimal


class Order(BaseModel):
    """Represents an order created on the backend."""

    model_config = ConfigDict(extra="allow")

    id: int = Field(description="Order ID")
    status: str = Field(default="pending", description="Order status (pending, confirmed, cancelled, ...)")
    total_amount: Optional[Decimal] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: list[OrderItem] = Field(default_factory=list)


class PaymentIntent(BaseModel):
    """Backend response to payment-intent creation."""

    client_secret: str
    payment_intent_id: str
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal

    @property
    def totals(self) -> Totals:
        return Totals(subtotal=self.subtotal, tax=self.tax_amount, total=self.total)


class PaymentConfirmation(BaseModel):
    """Backend response to payment confirmation."""

    model_config = ConfigDict(extra="allow")

    status: str
    order_id: Optional[int] = None


class PaymentConfig(BaseModel):
    """Gateway publishable configuration."""

    model_config = ConfigDict(extra="allow")

    publishable_key: str


class SavedPaymentMethod(BaseModel):
    """A payment method saved on the gateway for the user."""

    model_config = ConfigDict(extra="allow")

    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None


class CardInput(BaseModel):
    """Raw card details collected locally; only ever sent to the gateway."""

    number: str
    exp_month: int
    exp_year: int
    cvc: str

    def __repr__(self) -> str:
        return f"CardInput(last4={self.number[-4:]!r})"

    __str__ = __repr__


class BillingDetails(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class PaymentMethodDetails(BaseModel):
    """Payment method to confirm with: an existing gateway id or a new card."""

    payment_method_id: Optional[str] = None
    card: Optional[CardInput] = None
    billing_details: BillingDetails = Field(default_factory=BillingDetails)


class GatewayConfirmation(BaseModel):
    """Result of a successful gateway-side confirmation."""

    payment_intent_id: str
    payment_method_id: str
    status: str


class CheckoutPhase(str, Enum):
    IDLE = "idle"
    ORDER_CREATING = "order_creating"
    INTENT_READY = "intent_ready"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    ORDER = "order"
    INTENT = "intent"
    PAYMENT = "payment"


class CheckoutSession(BaseModel):
    """State of one checkout attempt, owned by the orchestrator."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    phase: CheckoutPhase = CheckoutPhase.ORDER_CREATING
    failure: Optional[FailureKind] = None
    save_payment_method: bool = False
    order_id: Optional[int] = None
    client_secret: Optional[str] = Field(default=None, repr=False)
    payment_intent_id: Optional[str] = None
    totals: Optional[Totals] = None
    confirm_attempts: int = 0
    gateway_confirmation: Optional[GatewayConfirmation] = None
    cart_cleared: bool = False


class CheckoutResult(BaseModel):
    """Outcome of one checkout transition."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    phase: CheckoutPhase
    failure: Optional[FailureKind] = None
    error: Optional[Exception] = None
    order_id: Optional[int] = None
    totals: Optional[Totals] = None
    retryable: bool = False
    stale: bool = False
