"""Streaming HTTP request forwarding with path rewriting and hooks."""
