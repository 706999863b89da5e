"""Shared data model."""
