"""
Workspace folder lifecycle.

A workspace is a folder (suffix .cowork) holding:
- manifest.json: workspace id, name, creation time, schema version
- workspace.db: the workspace's event store
- blobs/: attachments, managed elsewhere

WorkspaceManager keeps at most one workspace open and hands its store to
whoever needs it; there is no module-level "current workspace".

Invariants:
    - Opening or creating a workspace first closes the active one
    - A workspace whose database fails to open or migrate is never active
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .apply.workspace_store import WorkspaceStore
from .config import WorkspaceStoreConfig
from .errors import WorkspaceError
from .services import ChannelService, CoworkerService, MessageService, ThreadService
from .storage.migrations import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)

WORKSPACE_EXTENSION = ".cowork"
MANIFEST_FILENAME = "manifest.json"


@dataclass
class WorkspaceManifest:
    """Contents of manifest.json.

    Attributes:
        id: Workspace identifier, used as workspace_id for every event
        name: Display name
        created_at: ISO 8601 creation timestamp
        schema_version: Schema version at creation time
    """

    id: str
    name: str
    created_at: str
    schema_version: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkspaceManifest:
        """Create from dictionary representation.

        Raises:
            ValueError: If required fields are missing
        """
        required = ["id", "name"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        return cls(
            id=data["id"],
            name=data["name"],
            created_at=data.get("created_at", ""),
            schema_version=int(data.get("schema_version", 0)),
        )


@dataclass
class WorkspaceInfo:
    """An open workspace.

    Attributes:
        path: Workspace folder
        manifest: Parsed manifest
        store: The workspace's open event store
    """

    path: Path
    manifest: WorkspaceManifest
    store: WorkspaceStore


class WorkspaceManager:
    """Creates, opens and closes workspace folders.

    Example:
        >>> async with WorkspaceManager() as manager:
        ...     workspace = await manager.create("Acme", "/home/me/Acme")
        ...     coworkers = manager.coworkers()
        ...     await coworkers.create(name="Ada")
    """

    def __init__(self, config: WorkspaceStoreConfig | None = None) -> None:
        self.config = config or WorkspaceStoreConfig()
        self.current: WorkspaceInfo | None = None

    async def __aenter__(self) -> WorkspaceManager:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _db_path(self, workspace_path: Path) -> Path:
        return workspace_path / self.config.storage.db_filename

    async def create(self, name: str, folder: str | Path) -> WorkspaceInfo:
        """Create a new workspace folder and open it.

        Args:
            name: Display name
            folder: Target folder; .cowork is appended if missing

        Returns:
            The opened workspace

        Raises:
            WorkspaceError: If the folder already exists
        """
        await self.close()

        workspace_path = Path(folder).expanduser().resolve()
        if workspace_path.suffix != WORKSPACE_EXTENSION:
            workspace_path = workspace_path.with_name(workspace_path.name + WORKSPACE_EXTENSION)

        if workspace_path.exists():
            raise WorkspaceError(f"Workspace already exists at {workspace_path}", path=str(workspace_path))

        (workspace_path / "blobs").mkdir(parents=True)

        manifest = WorkspaceManifest(
            id=str(uuid.uuid4()),
            name=name,
            created_at=datetime.now(timezone.utc).isoformat(),
            schema_version=CURRENT_SCHEMA_VERSION,
        )
        (workspace_path / MANIFEST_FILENAME).write_text(
            json.dumps(asdict(manifest), indent=2), encoding="utf-8"
        )

        store = WorkspaceStore.open(
            self._db_path(workspace_path), self.config.storage, workspace_id=manifest.id
        )
        self.current = WorkspaceInfo(path=workspace_path, manifest=manifest, store=store)

        logger.info(
            f"Created workspace {name}",
            extra={"workspace_id": manifest.id, "path": str(workspace_path)},
        )
        return self.current

    async def open(self, folder: str | Path) -> WorkspaceInfo:
        """Open an existing workspace, migrating its database.

        Raises:
            WorkspaceError: If the folder, manifest or database is missing or
                the manifest is invalid
            StorageOpenError, MigrationStepError, VersionWriteError: If the
                database cannot be opened or migrated
        """
        await self.close()

        workspace_path = Path(folder).expanduser().resolve()
        if not workspace_path.is_dir():
            raise WorkspaceError(f"Workspace not found at {workspace_path}", path=str(workspace_path))

        manifest_path = workspace_path / MANIFEST_FILENAME
        if not manifest_path.exists():
            raise WorkspaceError(
                f"Invalid workspace: missing {MANIFEST_FILENAME} at {workspace_path}",
                path=str(workspace_path),
            )
        try:
            manifest = WorkspaceManifest.from_dict(json.loads(manifest_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError) as e:
            raise WorkspaceError(
                f"Invalid workspace manifest at {manifest_path}: {e}", path=str(workspace_path)
            ) from e

        db_path = self._db_path(workspace_path)
        if not db_path.exists():
            raise WorkspaceError(
                f"Invalid workspace: missing {db_path.name} at {workspace_path}",
                path=str(workspace_path),
            )

        store = WorkspaceStore.open(db_path, self.config.storage, workspace_id=manifest.id)
        self.current = WorkspaceInfo(path=workspace_path, manifest=manifest, store=store)

        logger.info(
            f"Opened workspace {manifest.name}",
            extra={"workspace_id": manifest.id, "path": str(workspace_path)},
        )
        return self.current

    async def close(self) -> None:
        """Close the active workspace, if any. Never raises."""
        if self.current is None:
            return
        workspace, self.current = self.current, None
        await workspace.store.close()
        logger.info("Closed workspace", extra={"workspace_id": workspace.manifest.id})

    def _require_current(self) -> WorkspaceInfo:
        if self.current is None:
            raise WorkspaceError("No workspace is currently open")
        return self.current

    def coworkers(self, actor: str = "user") -> CoworkerService:
        """Coworker commands bound to the active workspace."""
        workspace = self._require_current()
        return CoworkerService(workspace.store, workspace.manifest.id, actor=actor)

    def channels(self, actor: str = "user") -> ChannelService:
        """Channel commands bound to the active workspace."""
        workspace = self._require_current()
        return ChannelService(workspace.store, workspace.manifest.id, actor=actor)

    def threads(self, actor: str = "user") -> ThreadService:
        """Thread commands bound to the active workspace."""
        workspace = self._require_current()
        return ThreadService(workspace.store, workspace.manifest.id, actor=actor)

    def messages(self, actor: str = "user") -> MessageService:
        """Message commands bound to the active workspace."""
        workspace = self._require_current()
        return MessageService(workspace.store, workspace.manifest.id, actor=actor)
