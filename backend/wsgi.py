# Overview: Entry point for `flask --app wsgi` and WSGI servers.

from bursar import create_app

app = create_app()
