"""Workflows bundled with railci."""
