"""Shared utilities: entity cache, event bus, file-backed stores, time helpers."""
