"""Customer domain events and the listener that turns them into audit activities."""

import logging
from dataclasses import dataclass, field
from typing import Any, assert_never
from uuid import UUID

from rolodex.models.customer import TRACKED_FIELDS

logger = logging.getLogger(__name__)

# Request metadata copied into activity properties when present.
CONTEXT_KEYS = ("source", "import_id", "ip_address", "user_agent", "url", "method")


@dataclass(frozen=True)
class CustomerCreated:
    user_id: UUID
    customer_id: UUID
    name: str
    email: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CustomerUpdated:
    user_id: UUID
    customer_id: UUID
    name: str
    original: dict[str, Any]
    current: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)

    def changes(self) -> dict[str, dict[str, Any]]:
        """Tracked fields whose value differs, as ``{field: {old, new}}``."""
        diff: dict[str, dict[str, Any]] = {}
        for name in TRACKED_FIELDS:
            old = self.original.get(name)
            new = self.current.get(name)
            if old != new:
                diff[name] = {"old": old, "new": new}
        return diff


@dataclass(frozen=True)
class CustomerDeleted:
    user_id: UUID
    customer_id: UUID
    name: str
    data: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)


CustomerEvent = CustomerCreated | CustomerUpdated | CustomerDeleted


class CustomerActivityRecorder:
    """Writes one audit activity per customer event."""

    def __init__(self, activity_repo: Any):
        self.activity_repo = activity_repo

    def handle(self, event: CustomerEvent) -> Any:
        if isinstance(event, CustomerCreated):
            return self._record(
                event,
                "created",
                f"Customer '{event.name}' was created",
                {"customer_id": str(event.customer_id), "name": event.name, "email": event.email},
            )
        elif isinstance(event, CustomerUpdated):
            changes = event.changes()
            if not changes:
                logger.debug("Customer %s updated without tracked changes", event.customer_id)
                return None
            changed = ", ".join(changes)
            return self._record(
                event,
                "updated",
                f"Customer '{event.name}' was updated. Changed fields: {changed}",
                {
                    "customer_id": str(event.customer_id),
                    "changes": changes,
                    "changed_fields": list(changes),
                },
            )
        elif isinstance(event, CustomerDeleted):
            return self._record(
                event,
                "deleted",
                f"Customer '{event.name}' was deleted",
                {"customer_id": str(event.customer_id), "deleted_data": event.data},
            )
        else:
            assert_never(event)

    def _record(
        self, event: CustomerEvent, name: str, description: str, properties: dict[str, Any]
    ) -> Any:
        for key in CONTEXT_KEYS:
            if event.context.get(key) is not None:
                properties[key] = event.context[key]
        properties.setdefault("source", "web")
        return self.activity_repo.create(
            event.user_id,
            subject_type="customer",
            subject_id=event.customer_id,
            event=name,
            description=description,
            properties=properties,
        )


class EventDispatcher:
    """Synchronous dispatcher; listeners run in the caller's transaction order."""

    def __init__(self, recorder: CustomerActivityRecorder):
        self.recorder = recorder

    def dispatch(self, event: CustomerEvent) -> None:
        self.recorder.handle(event)
