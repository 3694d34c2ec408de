"""Deterministic analysis steps that run before any model call."""
