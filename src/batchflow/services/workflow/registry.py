"""In-memory registry of open workflow sessions, owned by the app instance."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from ...models.domain import Coordinates
from .session import WorkflowSession

logger = logging.getLogger(__name__)


class UnknownSession(KeyError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(workflow_id)
        self.workflow_id = workflow_id

    def __str__(self) -> str:
        return f"Workflow '{self.workflow_id}' not found"


class SessionRegistry:
    """Creates sessions wired to shared collaborators and keeps them by id.

    Collaborators are built lazily through factories so an app can start
    without OSRM or Supabase configured. ``directory_factory`` may return
    None, in which case vehicle tiers and facility details must be supplied
    by the caller.
    """

    def __init__(
        self,
        optimizer_factory: Optional[Callable[[], Any]] = None,
        store_factory: Optional[Callable[[], Any]] = None,
        directory_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.optimizer_factory = optimizer_factory
        self.store_factory = store_factory
        self.directory_factory = directory_factory
        self._optimizer = None
        self._store = None
        self._sessions: dict[str, WorkflowSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._sessions

    @property
    def optimizer(self):
        if self._optimizer is None and self.optimizer_factory is not None:
            self._optimizer = self.optimizer_factory()
        return self._optimizer

    @property
    def store(self):
        if self._store is None and self.store_factory is not None:
            self._store = self.store_factory()
        return self._store

    def directory(self):
        return self.directory_factory() if self.directory_factory is not None else None

    def create(self) -> tuple[str, WorkflowSession]:
        workflow_id = uuid.uuid4().hex
        session = WorkflowSession(optimizer=self.optimizer, store=self.store)
        self._sessions[workflow_id] = session
        logger.info(f"Opened workflow {workflow_id}")
        return workflow_id, session

    async def resume(self, pre_batch_id: str, start_step: int = 2) -> tuple[str, WorkflowSession]:
        """Open a new session pre-filled from a saved draft."""
        store = self.store
        if store is None:
            raise RuntimeError("No batch store is configured.")
        draft = await store.get_draft(pre_batch_id)
        if draft is None:
            raise ValueError(f"Pre-batch '{pre_batch_id}' not found")

        facilities = None
        start = None
        directory = self.directory()
        if directory is not None:
            facilities = await asyncio.to_thread(directory.list_facilities, draft.facility_order)
            if draft.start_location_id and draft.start_location_type == "warehouse":
                warehouse = await asyncio.to_thread(directory.get_warehouse, draft.start_location_id)
                if warehouse is not None and warehouse.lat is not None and warehouse.lng is not None:
                    start = Coordinates(lat=warehouse.lat, lng=warehouse.lng)

        session = WorkflowSession(optimizer=self.optimizer, store=store)
        session.resume(draft, facilities, start_step=start_step, start_coordinates=start)
        workflow_id = uuid.uuid4().hex
        self._sessions[workflow_id] = session
        return workflow_id, session

    def get(self, workflow_id: str) -> WorkflowSession:
        session = self._sessions.get(workflow_id)
        if session is None:
            raise UnknownSession(workflow_id)
        return session

    def drop(self, workflow_id: str) -> None:
        session = self.get(workflow_id)
        session.reset_workflow()
        del self._sessions[workflow_id]
        logger.info(f"Closed workflow {workflow_id}")
