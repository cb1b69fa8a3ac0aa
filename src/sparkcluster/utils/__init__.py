"""
Shared utilities: logging, exceptions and cleanup handling.
"""
