"""Checkout orchestration: order, payment intent, confirmation."""

import logging
from typing import Optional

from .auth import AuthSession
from .cart import CartStore
from .errors import (
    CheckoutInProgressError,
    CheckoutStateError,
    EmptyCartError,
    PaymentDeclined,
    StorefrontError,
)
from .gateway import PaymentGateway
from .models import (
    BillingDetails,
    CartState,
    CheckoutPhase,
    CheckoutResult,
    CheckoutSession,
    FailureKind,
    PaymentMethodDetails,
)
from .storefront_client import StorefrontClient

logger = logging.getLogger(__name__)

ACTIVE_PHASES = (
    CheckoutPhase.ORDER_CREATING,
    CheckoutPhase.INTENT_READY,
    CheckoutPhase.CONFIRMING,
    CheckoutPhase.FAILED,
)


class CheckoutOrchestrator:
    """Runs one checkout at a time through its state machine.

    ``Idle -> OrderCreating -> IntentReady -> Confirming -> Succeeded``, with
    ``Failed(order)`` returning to Idle, ``Failed(intent)`` re-requesting an
    intent for the same order and ``Failed(payment)`` re-entering
    confirmation with the same client secret.

    Every transition returns a ``CheckoutResult``; errors are carried in the
    result rather than raised. A transition that completes after its session
    was abandoned or replaced returns a ``stale`` result and changes nothing.
    """

    def __init__(
        self,
        cart: CartStore,
        api: StorefrontClient,
        gateway: PaymentGateway,
        auth: Optional[AuthSession] = None,
        max_confirm_attempts: int = 3,
    ) -> None:
        self.cart = cart
        self.api = api
        self.gateway = gateway
        self.auth = auth
        self.max_confirm_attempts = max_confirm_attempts
        self._session: Optional[CheckoutSession] = None
        self._unsubscribe = cart.subscribe(self._on_cart_changed)

    @property
    def session(self) -> Optional[CheckoutSession]:
        return self._session

    @property
    def phase(self) -> CheckoutPhase:
        return self._session.phase if self._session else CheckoutPhase.IDLE

    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    def _is_stale(self, session: CheckoutSession) -> bool:
        return self._session is not session

    def _stale(self, session: CheckoutSession) -> CheckoutResult:
        logger.info(f"Ignoring completion for superseded checkout (order {session.order_id})")
        return CheckoutResult(ok=False, phase=self.phase, order_id=session.order_id, stale=True)

    def _rejected(self, error: StorefrontError, retryable: bool = False) -> CheckoutResult:
        session = self._session
        return CheckoutResult(
            ok=False,
            phase=self.phase,
            failure=session.failure if session else None,
            error=error,
            order_id=session.order_id if session else None,
            totals=session.totals if session else None,
            retryable=retryable,
        )

    def _result(self, session: CheckoutSession, error: Optional[StorefrontError] = None) -> CheckoutResult:
        retryable = False
        if session.failure == FailureKind.INTENT:
            retryable = True
        elif session.failure == FailureKind.PAYMENT:
            retryable = session.confirm_attempts < self.max_confirm_attempts
        return CheckoutResult(
            ok=error is None,
            phase=session.phase,
            failure=session.failure,
            error=error,
            order_id=session.order_id,
            totals=session.totals,
            retryable=retryable,
        )

    def _fail(self, session: CheckoutSession, failure: FailureKind, error: StorefrontError) -> CheckoutResult:
        session.phase = CheckoutPhase.FAILED
        session.failure = failure
        logger.warning(f"Checkout failed ({failure.value}) for order {session.order_id}: {error}")
        return self._result(session, error)

    async def start_checkout(self, save_payment_method: bool = False) -> CheckoutResult:
        """Create the order from the cart snapshot and request its payment intent."""
        if self.is_active():
            return self._rejected(CheckoutInProgressError("A checkout is already in progress"))
        if self.cart.is_empty():
            return self._rejected(EmptyCartError("Cart is empty"))

        snapshot: CartState = self.cart.snapshot()
        session = CheckoutSession(
            phase=CheckoutPhase.ORDER_CREATING,
            save_payment_method=save_payment_method,
        )
        self._session = session
        logger.info(f"Starting checkout for {snapshot.count} item(s), provisional total {snapshot.total}")

        try:
            order = await self.api.create_order(snapshot)
        except StorefrontError as e:
            if self._is_stale(session):
                return self._stale(session)
            # No order exists; back to Idle so the whole flow can be retried.
            self._session = None
            logger.warning(f"Order creation failed: {e}")
            return CheckoutResult(
                ok=False,
                phase=CheckoutPhase.FAILED,
                failure=FailureKind.ORDER,
                error=e,
                retryable=True,
            )

        if self._is_stale(session):
            logger.warning(f"Order {order.id} was created for an abandoned checkout")
            return self._stale(session)

        session.order_id = order.id
        return await self._request_intent(session)

    async def retry_payment_intent(self) -> CheckoutResult:
        """Request a new payment intent for the existing order after ``Failed(intent)``."""
        session = self._session
        if session is None or session.failure != FailureKind.INTENT:
            return self._rejected(CheckoutStateError(f"No payment intent to retry in phase {self.phase.value}"))
        session.phase = CheckoutPhase.ORDER_CREATING
        session.failure = None
        return await self._request_intent(session)

    async def _request_intent(self, session: CheckoutSession) -> CheckoutResult:
        try:
            intent = await self.api.create_payment_intent(session.order_id, session.save_payment_method)
        except StorefrontError as e:
            if self._is_stale(session):
                return self._stale(session)
            return self._fail(session, FailureKind.INTENT, e)

        if self._is_stale(session):
            return self._stale(session)

        session.client_secret = intent.client_secret
        session.payment_intent_id = intent.payment_intent_id
        session.totals = intent.totals
        session.phase = CheckoutPhase.INTENT_READY
        logger.info(f"Order {session.order_id} ready for payment, total {intent.total}")
        return self._result(session)

    def _billing_details(self, payment_method: PaymentMethodDetails) -> PaymentMethodDetails:
        billing = payment_method.billing_details
        user = self.auth.user if self.auth else None
        if user is None or (billing.name and billing.email):
            return payment_method
        return payment_method.model_copy(
            update={
                "billing_details": BillingDetails(
                    name=billing.name or user.full_name or None,
                    email=billing.email or user.email,
                )
            }
        )

    async def confirm_payment(self, payment_method: PaymentMethodDetails) -> CheckoutResult:
        """
        Confirm the payment with the gateway, then finalize it on the backend.

        Allowed from ``IntentReady`` and, up to ``max_confirm_attempts`` in
        total, from ``Failed(payment)`` reusing the same client secret.
        """
        session = self._session
        if session is None:
            return self._rejected(CheckoutStateError("No checkout in progress"))
        can_confirm = session.phase == CheckoutPhase.INTENT_READY or (
            session.phase == CheckoutPhase.FAILED and session.failure == FailureKind.PAYMENT
        )
        if not can_confirm:
            return self._rejected(CheckoutStateError(f"Cannot confirm payment in phase {session.phase.value}"))
        if session.confirm_attempts >= self.max_confirm_attempts:
            return self._rejected(
                CheckoutStateError(
                    f"Payment confirmation attempted {session.confirm_attempts} times; start a new checkout"
                )
            )

        session.phase = CheckoutPhase.CONFIRMING
        session.failure = None
        session.confirm_attempts += 1
        logger.info(f"Confirming payment for order {session.order_id} (attempt {session.confirm_attempts})")

        try:
            confirmation = session.gateway_confirmation
            if confirmation is None:
                confirmation = await self.gateway.confirm_card_payment(
                    session.client_secret, self._billing_details(payment_method)
                )
                session.gateway_confirmation = confirmation
            else:
                logger.info(f"Gateway already accepted intent {session.payment_intent_id}, resending confirmation")
            # The gateway has accepted the payment: finalize it on the backend
            # even if the session was superseded meanwhile.
            result = await self.api.confirm_payment(session.payment_intent_id, confirmation.payment_method_id)
            if result.status != "succeeded":
                raise PaymentDeclined(f"Payment {result.status}", code=result.status)
        except StorefrontError as e:
            if self._is_stale(session):
                return self._stale(session)
            return self._fail(session, FailureKind.PAYMENT, e)

        if self._is_stale(session):
            return self._stale(session)

        session.phase = CheckoutPhase.SUCCEEDED
        if not session.cart_cleared:
            session.cart_cleared = True
            self.cart.clear_cart()
        logger.info(f"Order {session.order_id} paid")
        return self._result(session)

    def abandon(self) -> CheckoutResult:
        """
        Discard the current checkout; completions still in flight become stale.

        Refused while a payment confirmation is in flight, since the payment
        may already be taken and its order must settle first.
        """
        session = self._session
        if session is not None and session.phase == CheckoutPhase.CONFIRMING:
            return self._rejected(CheckoutStateError("Payment confirmation in progress; wait for it to finish"))
        if session is not None:
            logger.info(f"Abandoning checkout in phase {session.phase.value} (order {session.order_id})")
            self._session = None
        return CheckoutResult(ok=True, phase=CheckoutPhase.IDLE)

    def _on_cart_changed(self, state: CartState) -> None:
        if state.items or self._session is None:
            return
        if self._session.phase in (CheckoutPhase.CONFIRMING, CheckoutPhase.SUCCEEDED):
            return
        self.abandon()

    def close(self) -> None:
        self._unsubscribe()
