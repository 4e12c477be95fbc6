from .app import create_app, serve_in_background

__all__ = ["create_app", "serve_in_background"]
