"""
Magic Workspaces (FastAPI): README-lite

Overview
- A single-operator service that provisions, inspects and tears down isolated
  workspaces, each backed by exactly one Docker container.
- Stateless: there is no database. Every container this service creates carries
  the ownership label ``magic.computer=true`` and the workspace view is rebuilt
  from engine labels on every query.
- Workspaces are created from a compiled-in template catalog or as "custom"
  workspaces using the configured default image.

Quickstart (local)
  $ python -m venv ./venv && source ./venv/bin/activate
  $ pip install .
  $ magic-server magic_server.app.main:app --host 127.0.0.1 --port 8081
- Health check (unauthenticated): GET http://127.0.0.1:8081/health

Authentication
- Header name: X-API-Key (configurable via WORKSPACE_API_KEY_HEADER)
- Keys: WORKSPACE_API_KEY (single) or WORKSPACE_API_KEYS (comma-separated).
- If no key is configured, authentication is disabled.

Endpoints
- GET    /templates?category=         -> { templates, categories }
- GET    /templates/{template_id}        -> template
- GET    /workspaces                     -> { workspaces }
- POST   /workspaces                     -> { id, success }   (create + start)
- GET    /workspaces/{id}                -> workspace view
- POST   /workspaces/{id}/start          -> { success }
- POST   /workspaces/{id}/stop           -> { success }
- DELETE /workspaces/{id}                -> { success }
- GET    /workspaces/{id}/logs?tail=100  -> { logs }
- POST   /workspaces/{id}/exec           -> { output, exit_code, error, truncated, success }

Failures are returned as { success: false, error: <kind>, detail: <message> }
with kind one of not_found, engine_unavailable, timeout, invalid, conflict,
engine_error.

Environment Configuration (.env support)
- DOCKER_SOCKET                    # Engine socket path (default: /var/run/docker.sock)
- DOCKER_CLIENT_TIMEOUT            # Engine request timeout in seconds (default: 60)
- WORKSPACE_CONTAINER_PREFIX       # Container name prefix (default: "magic-")
- WORKSPACE_DEFAULT_IMAGE          # Image for custom workspaces (default: "alpine:3.20")
- WORKSPACE_DEFAULT_COMMAND        # Keep-alive command for custom workspaces (default: "sleep infinity")
- WORKSPACE_STOP_TIMEOUT_SECONDS   # Grace period for stop (default: 10)
- WORKSPACE_EXEC_TIMEOUT_SECONDS   # Wall-clock bound for exec (default: 10)
- WORKSPACE_EXEC_MAX_OUTPUT_BYTES  # Output cap for exec (default: 1 MiB)
- WORKSPACE_LOGS_DEFAULT_TAIL      # Default log tail (default: 100)
- WORKSPACE_LOGS_TIMEOUT_SECONDS   # Bound for log retrieval (default: 15)
- CORS_ALLOW_ORIGINS, LOG_LEVEL, WORKSPACE_MANAGER_VERSION

Version
- Matches pyproject: 0.1.0
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
