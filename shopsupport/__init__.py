"""
ShopSupport real-time session server.

Agents and storefront widget customers share per-conversation broadcast
groups over a WebSocket; customer messages are enriched asynchronously
with AI reply suggestions and auto-responses.
"""

__version__ = "0.1.0"
