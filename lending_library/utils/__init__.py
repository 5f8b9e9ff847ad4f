"""Validation, identifier and CLI output helpers."""
