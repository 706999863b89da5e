"""Conversation loop, tool dispatch and inference engines."""
