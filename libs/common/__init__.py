"""Shared utilities used across services."""
