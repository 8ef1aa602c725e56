"""
logrelay - Distributed logging pipeline

This package provides the producer-side buffering transport client, the
ingestion server with real-time WebSocket fan-out and alerting, and the
rotating file store and query engine behind it.
"""

__version__ = "0.1.0"
