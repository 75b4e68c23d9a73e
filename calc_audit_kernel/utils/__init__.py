"""Deterministic utilities shared across the kernel."""
