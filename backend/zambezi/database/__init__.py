"""
Database package initialization.

- base: declarative base and mixins
- connection: async engine, sessions and the FastAPI session dependency
- models: ORM models for orders, payments, invoices and webhook events
"""

__all__ = []
