"""
Domain command services for coworkers, channels, threads and messages.

Each service turns a domain command (create, update, archive) into one
append on an injected WorkspaceStore and returns the resulting projection
row. Services hold no workspace state of their own.

Update arguments left at UNSET are not part of the change; None clears a
nullable field.

Invariants:
    - Every mutation goes through WorkspaceStore.append
    - Updates and archives target an existing row of the same workspace
    - Archiving an archived entity appends nothing
    - Threads are created in active channels, messages in active threads
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, ClassVar

from .apply.applier import CREATED, DELETED, UPDATED
from .apply.projections import Channel, Coworker, Message, Thread
from .apply.workspace_store import WorkspaceStore
from .errors import EntityArchivedError, EntityNotFoundError

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def _present(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _changes(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not UNSET}


class EntityService:
    """Shared command plumbing for one projected entity type."""

    entity_type: ClassVar[str]

    def __init__(self, store: WorkspaceStore, workspace_id: str, actor: str = "user") -> None:
        """Initialize the service.

        Args:
            store: Open, migrated workspace store
            workspace_id: Workspace all commands target
            actor: Actor recorded on appended events
        """
        self.store = store
        self.workspace_id = workspace_id
        self.actor = actor

    async def _require_active(self, entity_id: str, entity_type: str | None = None) -> Any:
        entity_type = entity_type or self.entity_type
        row = await self.store.find(self.workspace_id, entity_id, entity_type)
        if row is None:
            raise EntityNotFoundError(entity_type, entity_id)
        if row.deleted_at is not None:
            raise EntityArchivedError(entity_type, entity_id)
        return row

    async def _append(self, entity_id: str, event_type: str, payload: dict[str, Any]) -> Any:
        await self.store.append(
            workspace_id=self.workspace_id,
            actor=self.actor,
            entity_type=self.entity_type,
            entity_id=entity_id,
            event_type=event_type,
            payload=payload,
        )
        return await self.store.find(self.workspace_id, entity_id, self.entity_type)

    async def get(self, entity_id: str) -> Any | None:
        """Get an entity, including archived ones."""
        return await self.store.find(self.workspace_id, entity_id, self.entity_type)

    async def list(self) -> list[Any]:
        """List active entities."""
        return await self.store.list_active(self.workspace_id, self.entity_type)

    async def archive(self, entity_id: str, reason: str | None = None) -> None:
        """Soft-delete an entity.

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        row = await self.store.find(self.workspace_id, entity_id, self.entity_type)
        if row is None:
            raise EntityNotFoundError(self.entity_type, entity_id)
        if row.deleted_at is not None:
            logger.debug(
                "Entity already archived",
                extra={"entity_type": self.entity_type, "entity_id": entity_id},
            )
            return
        await self._append(entity_id, DELETED, _present(reason=reason))


class CoworkerService(EntityService):
    """Create, update and archive coworkers.

    Example:
        >>> coworkers = CoworkerService(store, workspace_id="w1")
        >>> ada = await coworkers.create(name="Ada")
        >>> await coworkers.update(ada.id, description="Analyst")
        >>> await coworkers.update(ada.id, description=None)  # clears it
    """

    entity_type = "coworker"

    async def create(
        self,
        name: str,
        description: str | None = None,
        role_prompt: str | None = None,
        defaults_json: str | None = None,
        template_id: str | None = None,
        template_version: int | None = None,
        template_description: str | None = None,
    ) -> Coworker:
        """Create a coworker with a generated id."""
        coworker_id = str(uuid.uuid4())
        payload = _present(
            name=name,
            description=description,
            role_prompt=role_prompt,
            defaults_json=defaults_json,
            template_id=template_id,
            template_version=template_version,
            template_description=template_description,
        )
        return await self._append(coworker_id, CREATED, payload)

    async def update(
        self,
        coworker_id: str,
        name: str = UNSET,
        description: str | None = UNSET,
        role_prompt: str | None = UNSET,
        defaults_json: str | None = UNSET,
    ) -> Coworker:
        """Update the given fields of a coworker.

        Raises:
            EntityNotFoundError: If the coworker does not exist
            EntityArchivedError: If the coworker is archived
        """
        await self._require_active(coworker_id)
        payload = _changes(
            name=name,
            description=description,
            role_prompt=role_prompt,
            defaults_json=defaults_json,
        )
        return await self._append(coworker_id, UPDATED, payload)


class ChannelService(EntityService):
    """Create, update and archive channels."""

    entity_type = "channel"

    async def create(
        self,
        name: str,
        purpose: str | None = None,
        pinned_json: str | None = None,
        is_default: bool = False,
        sort_order: int | None = None,
    ) -> Channel:
        """Create a channel; appended after existing channels unless sort_order is given."""
        if sort_order is None:
            sort_order = len(await self.list())
        channel_id = str(uuid.uuid4())
        payload = _present(
            name=name,
            purpose=purpose,
            pinned_json=pinned_json,
            is_default=is_default,
            sort_order=sort_order,
        )
        return await self._append(channel_id, CREATED, payload)

    async def update(
        self,
        channel_id: str,
        name: str = UNSET,
        purpose: str | None = UNSET,
        pinned_json: str | None = UNSET,
        sort_order: int = UNSET,
    ) -> Channel:
        """Update the given fields of a channel.

        Raises:
            EntityNotFoundError: If the channel does not exist
            EntityArchivedError: If the channel is archived
        """
        await self._require_active(channel_id)
        payload = _changes(
            name=name,
            purpose=purpose,
            pinned_json=pinned_json,
            sort_order=sort_order,
        )
        return await self._append(channel_id, UPDATED, payload)


class ThreadService(EntityService):
    """Create, update and archive conversation threads."""

    entity_type = "thread"

    async def create(self, channel_id: str, title: str | None = None) -> Thread:
        """Create a thread in a channel.

        Raises:
            EntityNotFoundError: If the channel does not exist
            EntityArchivedError: If the channel is archived
        """
        await self._require_active(channel_id, "channel")
        thread_id = str(uuid.uuid4())
        return await self._append(thread_id, CREATED, _present(channel_id=channel_id, title=title))

    async def update(
        self,
        thread_id: str,
        title: str | None = UNSET,
        summary_ref: str | None = UNSET,
    ) -> Thread:
        """Update the given fields of a thread.

        Raises:
            EntityNotFoundError: If the thread does not exist
            EntityArchivedError: If the thread is archived
        """
        await self._require_active(thread_id)
        return await self._append(thread_id, UPDATED, _changes(title=title, summary_ref=summary_ref))

    async def list_in_channel(self, channel_id: str) -> list[Thread]:
        """List a channel's active threads, most recently updated first."""
        return await self.store.list_active(self.workspace_id, self.entity_type, parent_id=channel_id)


class MessageService(EntityService):
    """Post and update messages in threads."""

    entity_type = "message"

    async def create(
        self,
        thread_id: str,
        author_type: str,
        author_id: str | None = None,
        content_short: str | None = None,
        content_ref: str | None = None,
        status: str | None = None,
    ) -> Message:
        """Post a message to a thread.

        Args:
            thread_id: Target thread
            author_type: "user", "coworker" or "system"
            author_id: Author identifier (coworker id for coworker messages)
            content_short: Inline preview text
            content_ref: Blob reference of the full content
            status: "pending", "streaming", "complete" (default) or "error"

        Raises:
            EntityNotFoundError: If the thread does not exist
            EntityArchivedError: If the thread is archived
        """
        await self._require_active(thread_id, "thread")
        message_id = str(uuid.uuid4())
        payload = _present(
            thread_id=thread_id,
            author_type=author_type,
            author_id=author_id,
            content_short=content_short,
            content_ref=content_ref,
            status=status,
        )
        return await self._append(message_id, CREATED, payload)

    async def update(
        self,
        message_id: str,
        content_short: str | None = UNSET,
        content_ref: str | None = UNSET,
        status: str = UNSET,
    ) -> Message:
        """Update a message, e.g. when a streamed reply completes.

        Raises:
            EntityNotFoundError: If the message does not exist
            EntityArchivedError: If the message is archived
        """
        await self._require_active(message_id)
        payload = _changes(content_short=content_short, content_ref=content_ref, status=status)
        return await self._append(message_id, UPDATED, payload)

    async def list_in_thread(self, thread_id: str) -> list[Message]:
        """List a thread's messages, oldest first."""
        return await self.store.list_active(self.workspace_id, self.entity_type, parent_id=thread_id)
