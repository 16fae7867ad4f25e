"""ASGI entrypoint for the cookbook sessions API."""

from cookbook_sessions.api.app import create_app
from cookbook_sessions.containers import build_container

app = create_app(build_container())
