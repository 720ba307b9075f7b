"""
buildwatch API - HTTP entry points for triggers and live events.
"""

from buildwatch.api.app import create_app, event_stream, serve, sse_frame

__all__ = ["create_app", "event_stream", "serve", "sse_frame"]
