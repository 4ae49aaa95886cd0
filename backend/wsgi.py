# Overview: WSGI entry point used by `flask` CLI commands and production servers.

from studio_ledger import create_app

app = create_app()
