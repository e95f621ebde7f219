"""
termrelay: brokers interactive CLI sessions over WebSocket.

A spawned coding CLI's terminal output is parsed into typed events,
aggregated into per-turn response records and streamed to the client.
"""

__version__ = "0.1.0"
