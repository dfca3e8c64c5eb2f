"""
Local notification server.

A FastAPI application that serves the notification REST endpoints and the
event stream from memory, for running the client pipeline end to end.
"""

from api.main import app

__all__ = ["app"]
