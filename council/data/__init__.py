"""Cached, throttled access to injected market data fetchers."""
