"""
Progress event publishing.

The pipeline only publishes; delivery to subscribers is the bus
implementation's concern.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from schemas.imports import ProgressEvent
import logging

logger = logging.getLogger(__name__)


# Event names
IMPORT_PROGRESS = "import:progress"
IMPORT_SEASON_COMPLETED = "import:season_completed"
IMPORT_COMPLETED = "import:completed"
IMPORT_FAILED = "import:failed"
IMPORT_PAUSED = "import:paused"
TRACKER_STARTED = "tracker:started"
TRACKER_PROGRESS = "tracker:progress"
TRACKER_RESUMED = "tracker:resumed"
TRACKER_COMPLETED = "tracker:completed"
TRACKER_FAILED = "tracker:failed"
TRACKER_PAUSED = "tracker:paused"


class EventBus(ABC):
    """Publish-only progress bus"""

    @abstractmethod
    async def publish(self, event: ProgressEvent) -> None:
        pass

    async def emit(
        self,
        event: str,
        import_id: str,
        league_id: str,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """Build and publish an event; publishing failures are logged, never raised"""
        try:
            await self.publish(ProgressEvent(
                event=event,
                import_id=import_id,
                league_id=league_id,
                data=data or {}
            ))
        except Exception as e:
            logger.warning(f"Failed to publish {event} for import {import_id}: {e}")


class LoggingEventBus(EventBus):
    """Writes events to the application log"""

    async def publish(self, event: ProgressEvent) -> None:
        logger.info(
            f"[{event.league_id}] {event.event} import={event.import_id} "
            f"{event.data.get('percentage', '')}"
        )


class InMemoryEventBus(EventBus):
    """Keeps published events in a list (tests, local tooling)"""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    async def publish(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event: str) -> List[ProgressEvent]:
        return [e for e in self.events if e.event == event]
