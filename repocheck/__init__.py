"""Verification and repair of local rpm repository mirrors."""
