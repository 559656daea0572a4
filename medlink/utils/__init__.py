"""Shared helpers: timer scheduling and logging setup."""
