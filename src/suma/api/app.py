"""ASGI entrypoint: uvicorn suma.api.app:app

Configuration is read from the environment when this module is imported;
a missing required variable stops the process before it serves anything.
"""

from suma.api.factory import create_app

app = create_app()
