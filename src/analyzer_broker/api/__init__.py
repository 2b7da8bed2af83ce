"""HTTP surface of the broker."""

from analyzer_broker.api.app import create_app

__all__ = ["create_app"]
