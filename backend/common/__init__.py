"""Shared building blocks: errors, principal, Redis-backed stores, geo helpers."""
