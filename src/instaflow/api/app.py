"""ASGI entrypoint: `uvicorn instaflow.api.app:app` (role from APP_ROLE)."""

from .factory import create_app

app = create_app()
