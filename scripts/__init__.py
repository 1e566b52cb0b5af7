"""Operational entry points (seeding, maintenance)."""
