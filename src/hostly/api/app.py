"""ASGI entrypoint: ``uvicorn hostly.api.app:app``."""

from hostly.api.factory import create_app

app = create_app()
