"""HTTP routers for the workspace service."""
