"""Cicada ticket issuance service."""
