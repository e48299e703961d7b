# ride_dispatch/api/__init__.py
"""
HTTP API.
"""

from ride_dispatch.api.app import create_app, respond, result_status_code

__all__ = ["create_app", "respond", "result_status_code"]
