"""ASGI entrypoint: ``uvicorn admission.main:app``."""

from admission.core.app_factory import create_app

app = create_app()
