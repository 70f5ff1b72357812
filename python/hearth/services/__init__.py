"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and workers and orchestrate store
transactions, the connection registry and the background queues.
"""
