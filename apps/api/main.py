"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the humanmark package.
Run with: uvicorn apps.api.main:app

The app instance is created here (not in humanmark.app) so tests can import
create_app without a configured environment.
"""

from humanmark.app import create_app

app = create_app()

__all__ = ["app"]
