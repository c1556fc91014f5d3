"""Desired-state builders for child resources."""
