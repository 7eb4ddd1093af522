"""
magic_server package

Server-side implementation of the workspace orchestration service: a FastAPI
application plus the Docker-backed workspace layer it drives. Importing this
package does not import the FastAPI app, so tooling can discover modules
without side effects.

Public surface:
- __version__: string version of the server package

To run the service with uvicorn (example):
    uvicorn magic_server.app.main:app --host 127.0.0.1 --port 8081
"""

from .app import __version__

__all__ = ["__version__"]
