"""
API Module - REST API for Peer Discovery

Provides HTTP endpoints for inspecting and controlling discovery.
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
