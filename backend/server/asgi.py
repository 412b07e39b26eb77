"""
ASGI entry point for the voice loop control server.

    uvicorn server.asgi:app

Environment from a local .env is loaded before the app (and its
AppConfig) is built.
"""

from dotenv import load_dotenv

load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()
