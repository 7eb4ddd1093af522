from __future__ import annotations

"""
Workspace-level orchestration over the container runtime.

WorkspaceManager owns lifecycle policy: template resolution, idempotent
start/stop, stop-then-remove teardown and bounded exec/log access. It keeps no
state between calls. A workspace exists exactly as long as a container carrying
its labels exists in the engine, and every view is rebuilt from
``list_by_label`` on demand.
"""

import logging
from typing import List, Mapping, Optional, Sequence

from magic_server.app.config import ServerConfig
from magic_server.app.errors import (
    AlreadyInState,
    InvalidSpec,
    WorkspaceConflict,
    WorkspaceError,
    WorkspaceNotFound,
)
from magic_server.app.models import ExecResult, Workspace, WorkspaceState
from magic_server.app.workspaces.core import (
    CUSTOM_TYPE,
    LABEL_CREATED_AT,
    LABEL_FEATURES,
    LABEL_IMAGE,
    LABEL_NAME,
    LABEL_TYPE,
    LABEL_WORKSPACE_ID,
    build_workspace_labels,
    decode_features,
    gen_workspace_id,
    is_valid_workspace_name,
    ownership_selector,
    parse_created_at,
    workspace_selector,
)
from magic_server.app.workspaces.runtime import ContainerRuntimeClient, ContainerSpec, RuntimeDescriptor
from magic_server.app.workspaces.sessions import LogReader, normalize_argv
from magic_server.app.workspaces.templates import TemplateRegistry, default_registry

logger = logging.getLogger("magic_workspaces")

__all__ = [
    "WorkspaceManager",
    "workspace_from_descriptor",
]


def workspace_from_descriptor(desc: RuntimeDescriptor) -> Workspace:
    """
    Rebuild the workspace view from an engine descriptor.

    Only running and stopped are reported; a created-but-never-started
    container is shown as stopped and a paused one as running. A container
    without an id label is identified by its short container id.
    """
    labels = desc.labels
    status = WorkspaceState.running if desc.is_running else WorkspaceState.stopped
    return Workspace(
        id=labels.get(LABEL_WORKSPACE_ID) or desc.id,
        name=labels.get(LABEL_NAME) or desc.name,
        template_id=labels.get(LABEL_TYPE) or CUSTOM_TYPE,
        status=status,
        created_at=parse_created_at(labels.get(LABEL_CREATED_AT), desc.created),
        ports=dict(desc.ports),
        labels=dict(labels),
        features=decode_features(labels.get(LABEL_FEATURES)),
        image=labels.get(LABEL_IMAGE) or desc.image or None,
        container_id=desc.id,
    )


class WorkspaceManager:
    """
    Orchestrates workspace lifecycle on top of a ContainerRuntimeClient.

    Workspace names map deterministically to container names
    (``<prefix><name>``), so creating a second workspace with a name already in
    use is rejected by the engine and surfaces as WorkspaceConflict.
    """

    def __init__(
        self,
        runtime: ContainerRuntimeClient,
        registry: Optional[TemplateRegistry] = None,
        settings: Optional[ServerConfig] = None,
    ) -> None:
        self._runtime = runtime
        self._registry = registry or default_registry()
        self._settings = settings or runtime.settings
        self._logs = LogReader(runtime, timeout_seconds=self._settings.logs_timeout_seconds)

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    # --------------------------
    # Resolution
    # --------------------------

    async def _resolve(self, workspace_id: str) -> RuntimeDescriptor:
        if not workspace_id or not workspace_id.strip():
            raise WorkspaceNotFound("Workspace not found", workspace_id=workspace_id)
        matches = await self._runtime.list_by_label(workspace_selector(workspace_id))
        if not matches:
            # Owned containers without an id label are listed under their container id.
            owned = await self._runtime.list_by_label(ownership_selector())
            matches = [d for d in owned if not d.labels.get(LABEL_WORKSPACE_ID) and d.id == workspace_id]
        if not matches:
            raise WorkspaceNotFound(f"Workspace not found: {workspace_id}", workspace_id=workspace_id)
        if len(matches) > 1:
            logger.error(
                "Workspace %s resolves to %d containers; using %s",
                workspace_id,
                len(matches),
                matches[0].id,
            )
        return matches[0]

    # --------------------------
    # Creation
    # --------------------------

    async def create_workspace(
        self,
        name: str,
        template_id: Optional[str] = None,
        features: Optional[Sequence[str]] = None,
        *,
        image: Optional[str] = None,
        env: Optional[Sequence[str]] = None,
        ports: Optional[Mapping[str, str]] = None,
    ) -> Workspace:
        """
        Create the backing container for a new workspace without starting it.

        With a template id, image/env/ports come from the template and features
        default to the template's list. Without one (or with ``"custom"``) the
        workspace uses the configured default image unless ``image`` is given,
        and has an empty feature set.

        Raises:
            InvalidSpec: bad name, or empty image, before any engine call.
            TemplateNotFound: unknown template id.
            WorkspaceConflict: a workspace with this name already exists.
        """
        if not is_valid_workspace_name(name):
            raise InvalidSpec(f"Invalid workspace name: {name!r}")

        if template_id and template_id != CUSTOM_TYPE:
            template = self._registry.get(template_id)
            type_id = template.id
            resolved_image = template.image
            resolved_env = list(template.env)
            resolved_ports = template.port_map()
            command = template.command
            resolved_features = list(features) if features is not None else list(template.features)
        else:
            type_id = CUSTOM_TYPE
            resolved_image = image if image is not None else self._settings.default_image
            resolved_env = list(env or [])
            resolved_ports = dict(ports or {})
            command = tuple(self._settings.default_command) or None
            resolved_features = []

        workspace_id = gen_workspace_id()
        labels = build_workspace_labels(
            workspace_id=workspace_id,
            name=name,
            template_id=type_id,
            image=resolved_image,
            features=resolved_features,
        )
        spec = ContainerSpec(
            name=self._settings.workspace_container_name(name),
            image=resolved_image,
            env=tuple(resolved_env),
            ports=resolved_ports,
            labels=labels,
            command=command,
        )
        spec.validate()

        container_id = await self._runtime.create(spec)
        logger.info("Workspace %s (%s) created from %s", workspace_id, name, type_id)
        return Workspace(
            id=workspace_id,
            name=name,
            template_id=type_id,
            status=WorkspaceState.creating,
            created_at=parse_created_at(labels[LABEL_CREATED_AT]),
            ports={},
            labels=labels,
            features=resolved_features,
            image=resolved_image,
            container_id=container_id,
        )

    async def deploy_workspace(self, name: str, template_id: Optional[str] = None) -> Workspace:
        """
        Create and start a workspace; returns the view as reported by the engine.

        If starting fails the container is left in place (stopped) and the
        error propagates.
        """
        created = await self.create_workspace(name, template_id)
        await self.start_workspace(created.id)
        return await self.get_workspace(created.id)

    # --------------------------
    # Lifecycle
    # --------------------------

    async def start_workspace(self, workspace_id: str) -> None:
        desc = await self._resolve(workspace_id)
        if desc.is_running:
            logger.debug("Workspace %s already running", workspace_id)
            return
        try:
            await self._runtime.start(desc.id)
        except AlreadyInState:
            logger.debug("Workspace %s already running", workspace_id)
            return
        except WorkspaceNotFound:
            raise WorkspaceNotFound(f"Workspace not found: {workspace_id}", workspace_id=workspace_id)
        logger.info("Workspace %s started", workspace_id)

    async def stop_workspace(self, workspace_id: str) -> None:
        desc = await self._resolve(workspace_id)
        if not desc.is_running:
            logger.debug("Workspace %s already stopped", workspace_id)
            return
        try:
            await self._runtime.stop(desc.id)
        except AlreadyInState:
            logger.debug("Workspace %s already stopped", workspace_id)
            return
        except WorkspaceNotFound:
            raise WorkspaceNotFound(f"Workspace not found: {workspace_id}", workspace_id=workspace_id)
        logger.info("Workspace %s stopped", workspace_id)

    async def remove_workspace(self, workspace_id: str) -> None:
        """
        Stop, then remove the workspace container.

        A failed stop (other than "already stopped") aborts before removal, so
        the workspace is never deleted while running. A failed removal after a
        successful stop leaves the workspace stopped and propagates the error.
        """
        desc = await self._resolve(workspace_id)
        if desc.is_running:
            try:
                await self._runtime.stop(desc.id)
            except AlreadyInState:
                logger.debug("Workspace %s already stopped before removal", workspace_id)
        try:
            await self._runtime.remove(desc.id)
        except WorkspaceNotFound:
            logger.info("Workspace %s container already gone", workspace_id)
            return
        except WorkspaceError as exc:
            logger.error("Failed to remove workspace %s: %s", workspace_id, exc)
            raise
        logger.info("Workspace %s removed", workspace_id)

    # --------------------------
    # Queries
    # --------------------------

    async def list_workspaces(self) -> List[Workspace]:
        descriptors = await self._runtime.list_by_label(ownership_selector())
        return [workspace_from_descriptor(d) for d in descriptors]

    async def get_workspace(self, workspace_id: str) -> Workspace:
        return workspace_from_descriptor(await self._resolve(workspace_id))

    async def get_workspace_logs(self, workspace_id: str, tail: Optional[int] = None) -> str:
        desc = await self._resolve(workspace_id)
        return await self._logs.read(desc.id, tail or self._settings.logs_default_tail)

    async def exec_in_workspace(self, workspace_id: str, argv: Sequence[str]) -> ExecResult:
        """
        Run argv inside a running workspace.

        Bounds come from settings; on a bound the partial output is returned
        with ``error`` set rather than raising.

        Raises:
            WorkspaceNotFound, InvalidSpec, or WorkspaceConflict when the workspace is not running.
        """
        cmd = normalize_argv(argv)
        desc = await self._resolve(workspace_id)
        if not desc.is_running:
            raise WorkspaceConflict(f"Workspace is not running (status={desc.state})", workspace_id=workspace_id)
        return await self._runtime.exec(desc.id, cmd)
