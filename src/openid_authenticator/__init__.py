"""OpenID Connect authorization-code authentication for Starlette applications."""

__version__ = "0.1.0"
