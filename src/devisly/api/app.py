"""ASGI entrypoint: uvicorn devisly.api.app:app"""

from .factory import create_app

app = create_app()
