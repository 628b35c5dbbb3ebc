"""External collaborators called by the built-in node types.

The engine never talks to the outside world itself; node executors do, through
the services bundled in ``NodeServices``. In-memory implementations are used
by the CLI and the test suite.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class User(BaseModel):
    """A user record as returned by the directory."""

    username: str
    email: str
    name: str | None = None
    roles: list[str] = Field(default_factory=list)


class EmailMessage(BaseModel):
    """An outgoing message queued for the next mail cycle."""

    to: str
    subject: str
    body: str
    queued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class EventDraft(BaseModel):
    """Properties required to create an event."""

    name: str
    start: datetime
    end: datetime
    venue: str
    attendance: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def check_range(self) -> EventDraft:
        if self.end < self.start:
            raise ValueError("Event end must not be before its start")
        return self


class EventRecord(EventDraft):
    """An event after it was created in the store."""

    id: str


class UserDirectory(Protocol):
    async def find_by_username(self, username: str) -> User | None: ...


class Mailer(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class EventStore(Protocol):
    async def create(self, draft: EventDraft) -> EventRecord: ...


class InMemoryUserDirectory:
    """User directory backed by a dict keyed by username."""

    def __init__(self, users: list[User] | None = None):
        self._users = {u.username: u for u in users or []}

    def add(self, user: User) -> None:
        self._users[user.username] = user

    async def find_by_username(self, username: str) -> User | None:
        return self._users.get(username)


class OutboxMailer:
    """Mailer that records messages instead of delivering them."""

    def __init__(self) -> None:
        self.outbox: list[EmailMessage] = []
        self._lock = asyncio.Lock()

    async def send(self, message: EmailMessage) -> None:
        async with self._lock:
            self.outbox.append(message)
        logger.info(f"Queued email to {message.to}: {message.subject!r}")


class InMemoryEventStore:
    """Event store that keeps created events in a list.

    Every call creates a new record; nothing is deduplicated.
    """

    def __init__(self) -> None:
        self.events: list[EventRecord] = []

    async def create(self, draft: EventDraft) -> EventRecord:
        record = EventRecord(id=str(uuid.uuid4()), **draft.model_dump())
        self.events.append(record)
        logger.info(f"Created event {record.id} ({record.name})")
        return record


@dataclass
class NodeServices:
    """Bundle of collaborators passed to every executor."""

    users: UserDirectory = field(default_factory=InMemoryUserDirectory)
    mailer: Mailer = field(default_factory=OutboxMailer)
    events: EventStore = field(default_factory=InMemoryEventStore)
