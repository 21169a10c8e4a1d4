"""Storefront MCP server: cart, authenticated session and checkout client."""

__version__ = "0.1.0"
