# HushKey: HTTP API
#
# FastAPI application exposing backup export, restore, validation and
# health reporting to the local client.

from .main import app, start_api_server

__all__ = ["app", "start_api_server"]
