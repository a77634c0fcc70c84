"""
Core package for shared utilities.

Holds configuration and structured logging used across the checkout
service.
"""
