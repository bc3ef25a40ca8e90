# api/__init__.py
from getnet_gateway.api.server import app, create_app

__all__ = ["app", "create_app"]
