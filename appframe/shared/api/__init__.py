"""Shared web API helpers."""
