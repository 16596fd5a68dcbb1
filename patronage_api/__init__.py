"""HTTP surface of the patronage dividend engine (FastAPI)."""

from patronage_api.app import create_app

__all__ = ["create_app"]
