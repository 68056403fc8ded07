"""Relay protocol: wire models and channel implementations."""
