"""ASGI entrypoint for the TabletopScribe API."""

from tabletop_scribe.api.app import create_app
from tabletop_scribe.containers import build_container

app = create_app(build_container())
