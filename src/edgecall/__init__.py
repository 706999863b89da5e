"""Bounded tool-calling conversations between a language model and device tools."""

__version__ = "0.1.0"
