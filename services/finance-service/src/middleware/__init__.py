"""HTTP middleware helpers for the finance service."""
