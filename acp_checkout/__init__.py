"""Agentic checkout session service.

Creates, prices, updates, completes and cancels checkout sessions, charges
them through a payment gateway and reconciles provider webhooks back into
session state.
"""

__version__ = "0.1.0"
