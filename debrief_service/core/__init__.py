"""Core utilities: logging, errors, transactions."""
