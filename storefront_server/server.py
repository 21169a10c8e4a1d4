"""MCP Server for the storefront session."""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .checkout import CheckoutOrchestrator
from .config import Settings
from .container import Storefront
from .errors import StorefrontError, ValidationError
from .models import (
    AuthCredentials,
    BillingDetails,
    CardInput,
    CartState,
    CheckoutResult,
    PaymentMethodDetails,
    Product,
)

logger = logging.getLogger("storefront-mcp-server")

# Initialize server
app = Server("storefront-mcp-server")

# Global state
storefront: Storefront

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Use storefront_login or configure "
    "STOREFRONT_EMAIL and STOREFRONT_PASSWORD in the MCP settings."
)


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _money(value: Optional[Decimal]) -> str:
    return f"${Decimal(value or 0):.2f}"


def format_cart(state: CartState) -> str:
    if not state.items:
        return "Your cart is empty"

    result_lines = [f"Shopping Cart ({state.count} items):\n"]
    for i, item in enumerate(state.items.values(), 1):
        result_lines.append(f"\n{i}. {item.name}")
        result_lines.append(f"   Product ID: {item.id}")
        result_lines.append(f"   Price: {_money(item.unit_price)}")
        result_lines.append(f"   Quantity: {item.quantity}")
        result_lines.append(f"   Subtotal: {_money(item.subtotal)}")

    result_lines.append(f"\n{'='*50}")
    result_lines.append(f"Total: {_money(state.total)}")
    if state.shipping_address:
        result_lines.append(f"Shipping address: {state.shipping_address}")
    if state.notes:
        result_lines.append(f"Notes: {state.notes}")
    return "\n".join(result_lines)


def format_checkout(result: CheckoutResult, checkout: CheckoutOrchestrator) -> str:
    if result.stale:
        return "Checkout was abandoned before this step completed; nothing was changed."

    result_lines = []
    if result.ok:
        result_lines.append(f"Checkout phase: {result.phase.value}")
    else:
        failure = f" ({result.failure.value})" if result.failure else ""
        result_lines.append(f"Checkout failed{failure}: {result.error}")
        if result.retryable:
            result_lines.append("This step can be retried.")
    if result.order_id is not None:
        result_lines.append(f"Order: {result.order_id}")
    if result.totals:
        result_lines.append(f"Subtotal: {_money(result.totals.subtotal)}")
        result_lines.append(f"Tax: {_money(result.totals.tax)}")
        result_lines.append(f"Total: {_money(result.totals.total)}")
    elif not result.ok and not checkout.is_active():
        result_lines.append(f"Cart total: {_money(storefront.cart.cart_total)}")
    return "\n".join(result_lines)


def format_error(error: StorefrontError) -> str:
    if isinstance(error, ValidationError) and error.field_errors:
        fields = "\n".join(f"  {key}: {value}" for key, value in error.field_errors.items())
        return f"Error: {error.message}\n{fields}"
    return f"Error: {error.message}"


def payment_method_from_arguments(arguments: dict[str, Any]) -> PaymentMethodDetails:
    card = None
    if arguments.get("card_number"):
        card = CardInput(
            number=arguments["card_number"],
            exp_month=arguments["exp_month"],
            exp_year=arguments["exp_year"],
            cvc=arguments["cvc"],
        )
    return PaymentMethodDetails(
        payment_method_id=arguments.get("payment_method_id"),
        card=card,
        billing_details=BillingDetails(
            name=arguments.get("billing_name"),
            email=arguments.get("billing_email"),
        ),
    )


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = [
        Resource(
            uri=AnyUrl("storefront://cart"),
            name="Shopping Cart",
            mimeType="application/json",
            description="Current shopping cart contents",
        )
    ]

    if storefront.auth.is_authenticated():
        resources.append(
            Resource(
                uri=AnyUrl("storefront://orders"),
                name="Orders",
                mimeType="application/json",
                description="User's orders",
            )
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    if uri_str == "storefront://cart":
        return storefront.cart.state.model_dump_json(indent=2)

    elif uri_str == "storefront://orders":
        if not storefront.auth.is_authenticated():
            return "Error: Not authenticated. Please login first."

        orders = await storefront.api.get_orders()
        return json.dumps([order.model_dump(mode="json") for order in orders], indent=2)

    raise ValueError(f"Unknown resource: {uri}")


_EMPTY = {"type": "object", "properties": {}}


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="storefront_login",
            description="Authenticate with the storefront. Uses STOREFRONT_EMAIL/STOREFRONT_PASSWORD if not provided.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "User email address"},
                    "password": {"type": "string", "description": "User password"},
                },
            },
        ),
        Tool(name="storefront_logout", description="Logout and clear the local session", inputSchema=_EMPTY),
        Tool(
            name="storefront_register",
            description="Create a new storefront account (does not log in)",
            inputSchema={
                "type": "object",
                "properties": {
                    "username": {"type": "string"},
                    "email": {"type": "string"},
                    "password": {"type": "string"},
                    "password_confirm": {"type": "string"},
                    "first_name": {"type": "string"},
                    "last_name": {"type": "string"},
                    "phone": {"type": "string"},
                    "address": {"type": "string"},
                },
                "required": ["username", "email", "password", "password_confirm"],
            },
        ),
        Tool(name="storefront_get_profile", description="Show the authenticated user's profile", inputSchema=_EMPTY),
        Tool(
            name="storefront_update_profile",
            description="Update the authenticated user's profile",
            inputSchema={
                "type": "object",
                "properties": {
                    "first_name": {"type": "string"},
                    "last_name": {"type": "string"},
                    "email": {"type": "string"},
                    "phone": {"type": "string"},
                    "address": {"type": "string"},
                },
            },
        ),
        Tool(
            name="storefront_add_to_cart",
            description="Add one unit of a product to the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID"},
                    "name": {"type": "string", "description": "Product name"},
                    "price": {"type": "string", "description": "Unit price"},
                },
                "required": ["product_id", "name", "price"],
            },
        ),
        Tool(
            name="storefront_remove_from_cart",
            description="Remove a product from the shopping cart",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "string", "description": "Product ID to remove"}},
                "required": ["product_id"],
            },
        ),
        Tool(
            name="storefront_update_cart_quantity",
            description="Set the quantity of a product in the cart (0 removes it)",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID to update"},
                    "quantity": {"type": "integer", "description": "New quantity to set"},
                },
                "required": ["product_id", "quantity"],
            },
        ),
        Tool(name="storefront_get_cart", description="Get current shopping cart contents and total", inputSchema=_EMPTY),
        Tool(name="storefront_clear_cart", description="Remove every item from the cart", inputSchema=_EMPTY),
        Tool(
            name="storefront_set_shipping",
            description="Set the shipping address and/or order notes used at checkout",
            inputSchema={
                "type": "object",
                "properties": {
                    "shipping_address": {"type": "string"},
                    "notes": {"type": "string"},
                },
            },
        ),
        Tool(
            name="storefront_start_checkout",
            description="Create an order from the cart and prepare its payment",
            inputSchema={
                "type": "object",
                "properties": {
                    "save_payment_method": {
                        "type": "boolean",
                        "description": "Save the card for future purchases (default: false)",
                        "default": False,
                    },
                },
            },
        ),
        Tool(
            name="storefront_retry_payment_intent",
            description="Request the payment again for an order whose payment could not be prepared",
            inputSchema=_EMPTY,
        ),
        Tool(
            name="storefront_confirm_payment",
            description="Pay for the prepared order with a saved payment method or card details",
            inputSchema={
                "type": "object",
                "properties": {
                    "payment_method_id": {"type": "string", "description": "Saved payment method ID"},
                    "card_number": {"type": "string"},
                    "exp_month": {"type": "integer"},
                    "exp_year": {"type": "integer"},
                    "cvc": {"type": "string"},
                    "billing_name": {"type": "string"},
                    "billing_email": {"type": "string"},
                },
            },
        ),
        Tool(name="storefront_checkout_status", description="Show the current checkout state", inputSchema=_EMPTY),
        Tool(name="storefront_abandon_checkout", description="Abandon the current checkout", inputSchema=_EMPTY),
        Tool(name="storefront_get_orders", description="Get the user's orders", inputSchema=_EMPTY),
        Tool(
            name="storefront_cancel_order",
            description="Cancel a pending or confirmed order",
            inputSchema={
                "type": "object",
                "properties": {"order_id": {"type": "integer", "description": "Order ID to cancel"}},
                "required": ["order_id"],
            },
        ),
        Tool(name="storefront_get_payment_methods", description="List saved payment methods", inputSchema=_EMPTY),
        Tool(
            name="storefront_delete_payment_method",
            description="Remove a saved payment method",
            inputSchema={
                "type": "object",
                "properties": {"payment_method_id": {"type": "string"}},
                "required": ["payment_method_id"],
            },
        ),
    ]


AUTHENTICATED_TOOLS = {
    "storefront_get_profile",
    "storefront_update_profile",
    "storefront_start_checkout",
    "storefront_retry_payment_intent",
    "storefront_confirm_payment",
    "storefront_get_orders",
    "storefront_cancel_order",
    "storefront_get_payment_methods",
    "storefront_delete_payment_method",
}


async def handle_tool(name: str, arguments: dict[str, Any]) -> str:
    """Run one tool and return its text result."""
    cart = storefront.cart
    checkout = storefront.checkout

    if name in AUTHENTICATED_TOOLS and not await storefront.ensure_authenticated():
        return NOT_AUTHENTICATED

    if name == "storefront_login":
        credentials = storefront.settings.credentials
        email = arguments.get("email") or (credentials.email if credentials else None)
        password = arguments.get("password") or (credentials.password if credentials else None)
        if not email or not password:
            return "Error: No credentials provided and STOREFRONT_EMAIL/STOREFRONT_PASSWORD not configured."
        user = await storefront.auth.login(AuthCredentials(email=email, password=password))
        return f"Successfully logged in as {user.email or email}"

    elif name == "storefront_logout":
        storefront.auth.logout()
        return "Successfully logged out"

    elif name == "storefront_register":
        await storefront.auth.register(arguments)
        return f"Account {arguments.get('email')} created. Use storefront_login to sign in."

    elif name == "storefront_get_profile":
        user = await storefront.api.get_profile()
        return user.model_dump_json(indent=2)

    elif name == "storefront_update_profile":
        user = await storefront.api.update_profile(arguments)
        return f"Profile updated:\n{user.model_dump_json(indent=2)}"

    elif name == "storefront_add_to_cart":
        product = Product(id=str(arguments["product_id"]), name=arguments["name"], unit_price=Decimal(str(arguments["price"])))
        state = cart.add_item(product)
        return f"Added {product.name} (now {state.items[product.id].quantity} in cart)"

    elif name == "storefront_remove_from_cart":
        cart.remove_item(str(arguments["product_id"]))
        return f"Removed product {arguments['product_id']} from cart"

    elif name == "storefront_update_cart_quantity":
        cart.update_quantity(str(arguments["product_id"]), int(arguments["quantity"]))
        return f"Updated product {arguments['product_id']} to quantity {arguments['quantity']}"

    elif name == "storefront_get_cart":
        return format_cart(cart.state)

    elif name == "storefront_clear_cart":
        cart.clear_cart()
        return "Cart cleared"

    elif name == "storefront_set_shipping":
        if "shipping_address" in arguments:
            cart.set_shipping_address(arguments["shipping_address"])
        if "notes" in arguments:
            cart.set_notes(arguments["notes"])
        return format_cart(cart.state)

    elif name == "storefront_start_checkout":
        result = await checkout.start_checkout(save_payment_method=bool(arguments.get("save_payment_method", False)))
        return format_checkout(result, checkout)

    elif name == "storefront_retry_payment_intent":
        return format_checkout(await checkout.retry_payment_intent(), checkout)

    elif name == "storefront_confirm_payment":
        result = await checkout.confirm_payment(payment_method_from_arguments(arguments))
        if result.ok:
            return f"Payment successful! Order {result.order_id} has been confirmed."
        return format_checkout(result, checkout)

    elif name == "storefront_checkout_status":
        session = checkout.session
        if session is None:
            return f"No checkout in progress. Cart total: {_money(cart.cart_total)}"
        return session.model_dump_json(indent=2, exclude={"client_secret"})

    elif name == "storefront_abandon_checkout":
        result = checkout.abandon()
        if not result.ok:
            return format_error(result.error)
        return "Checkout abandoned"

    elif name == "storefront_get_orders":
        orders = await storefront.api.get_orders()
        if not orders:
            return "No orders found"
        result_lines = [f"Found {len(orders)} order(s):\n"]
        for i, order in enumerate(orders, 1):
            result_lines.append(f"\n{i}. Order #{order.id}")
            result_lines.append(f"   Status: {order.status}")
            if order.created_at:
                result_lines.append(f"   Date: {order.created_at.strftime('%Y-%m-%d %H:%M')}")
            if order.total_amount is not None:
                result_lines.append(f"   Total: {_money(order.total_amount)}")
        return "\n".join(result_lines)

    elif name == "storefront_cancel_order":
        await storefront.api.cancel_order(int(arguments["order_id"]))
        return f"Order {arguments['order_id']} cancelled"

    elif name == "storefront_get_payment_methods":
        methods = await storefront.api.get_payment_methods()
        if not methods:
            return "No saved payment methods"
        return "\n".join(
            f"{method.id}: {method.brand or 'card'} ending {method.last4 or '????'}"
            for method in methods
        )

    elif name == "storefront_delete_payment_method":
        await storefront.api.delete_payment_method(arguments["payment_method_id"])
        return f"Payment method {arguments['payment_method_id']} removed"

    return f"Unknown tool: {name}"


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    try:
        return _text(await handle_tool(name, arguments or {}))
    except StorefrontError as e:
        logger.warning(f"Tool {name} failed: {e}")
        return _text(format_error(e))
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return _text(f"Error: {str(e)}")


async def main() -> None:
    """Main entry point for the MCP server."""
    global storefront

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level.upper())

    storefront = Storefront(settings)
    await storefront.start()
    if not storefront.auth.is_authenticated():
        logger.warning("Not authenticated; checkout and order tools will require storefront_login")

    logger.info("Starting Storefront MCP Server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await storefront.close()


if __name__ == "__main__":
    asyncio.run(main())
