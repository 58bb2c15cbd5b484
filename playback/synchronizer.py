"""Deadline-based playback synchronization.

Every play/pause/seek, whether issued locally by the host or relayed as an
``audio-sync`` message, is applied through the same path: the action is
scheduled for the absolute deadline carried in its timestamp. Devices that
receive the message at different times therefore converge on one point in
time. Devices are assumed to share a common wall clock.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import ValidationError

from playback.scheduler import DelayedTaskQueue, wall_clock_ms
from server.interfaces.playback import IPlaybackTarget
from server.schemas import AudioSyncMessage, SyncAction

logger = logging.getLogger(__name__)

PlaybackState = Literal["idle", "loaded", "playing", "paused"]

SendFn = Callable[[dict[str, Any]], Union[Awaitable[Any], Any]]

DEFAULT_LEAD_MS = 100.0


class PlaybackSynchronizer:
    """Per-device playback state machine driven by scheduled sync actions."""

    def __init__(
        self,
        send: Optional[SendFn] = None,
        lead_ms: float = DEFAULT_LEAD_MS,
        scheduler: Optional[DelayedTaskQueue] = None,
        now_ms: Optional[Callable[[], float]] = None,
    ):
        """Initialize synchronizer.

        Args:
            send: Capability used to emit ``audio-sync`` to the room (host only)
            lead_ms: Fixed lead added to the issue time of local actions
            scheduler: Delayed task queue (default: a private queue)
            now_ms: Wall clock in ms since epoch (injectable for tests)
        """
        if lead_ms < 0:
            raise ValueError(f"lead_ms must be >= 0, got {lead_ms}")

        self.send = send
        self.lead_ms = lead_ms
        self._now_ms = now_ms or wall_clock_ms
        self.scheduler = scheduler or DelayedTaskQueue(now_ms=self._now_ms)

        self._target: Optional[IPlaybackTarget] = None
        self._state: PlaybackState = "idle"
        # Bumped on every load/unload so stale scheduled applies become no-ops
        self._generation = 0

        self.actions_applied = 0
        self.actions_dropped = 0

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def target(self) -> Optional[IPlaybackTarget]:
        return self._target

    def load(self, target: IPlaybackTarget) -> None:
        """Load a playback target, replacing any current one."""
        if self._target is not None:
            self.unload()

        self._generation += 1
        self._target = target
        self._state = "loaded"
        logger.info("Playback target loaded")

    def unload(self) -> None:
        """Tear down the audio session and abandon pending actions."""
        cancelled = self.scheduler.cancel_all()
        self._generation += 1
        self._target = None
        self._state = "idle"
        logger.info(f"Playback target unloaded ({cancelled} pending actions abandoned)")

    async def issue(self, action: SyncAction, position: Optional[float] = None) -> dict[str, Any]:
        """Issue a playback action from the host.

        The action is stamped ``now + lead``, sent to the room, and scheduled
        locally for the same deadline.

        Args:
            action: "play", "pause" or "seek"
            position: Optional target position in seconds

        Returns:
            The ``audio-sync`` envelope that was sent
        """
        message = AudioSyncMessage(
            action=action, timestamp=self._now_ms() + self.lead_ms, position=position
        )
        envelope = message.to_wire()

        if self.send is not None:
            result = self.send(envelope)
            if inspect.isawaitable(result):
                await result

        self._schedule(message)
        return envelope

    def handle_sync(self, message: Union[dict[str, Any], AudioSyncMessage]) -> None:
        """Schedule a relayed ``audio-sync`` action for its deadline."""
        if not isinstance(message, AudioSyncMessage):
            try:
                message = AudioSyncMessage.model_validate(message)
            except ValidationError as e:
                logger.warning(
                    f"Ignoring invalid audio-sync message: {e.error_count()} field error(s)",
                    extra={"message_type": "audio-sync"},
                )
                return

        self._schedule(message)

    def attach(self, client: Any) -> Callable[[], None]:
        """Subscribe to relayed ``audio-sync`` messages.

        Args:
            client: Object exposing ``subscribe(type, handler) -> unsubscribe``

        Returns:
            Unsubscribe function
        """
        return client.subscribe("audio-sync", self.handle_sync)

    def _schedule(self, message: AudioSyncMessage) -> None:
        generation = self._generation
        delay_ms = max(0.0, message.timestamp - self._now_ms())

        self.scheduler.schedule(
            message.timestamp,
            lambda: self._apply(generation, message.action, message.position),
        )
        logger.debug(
            f"Scheduled {message.action} in {delay_ms:.1f}ms",
            extra={"message_type": "audio-sync", "latency_ms": delay_ms},
        )

    def _apply(self, generation: int, action: SyncAction, position: Optional[float]) -> None:
        target = self._target
        if target is None or generation != self._generation:
            self.actions_dropped += 1
            logger.debug(f"Dropping {action}: audio session torn down")
            return

        if action == "play":
            if position is not None:
                target.seek(position)
            target.play()
            self._state = "playing"
        elif action == "pause":
            target.pause()
            self._state = "paused"
        elif position is not None:
            target.seek(position)
        else:
            self.actions_dropped += 1
            logger.debug("Dropping seek without position")
            return

        self.actions_applied += 1
        logger.debug(f"Applied {action} at {target.get_position():.2f}s")

    def get_stats(self) -> dict[str, Any]:
        """Get synchronizer statistics."""
        return {
            "state": self._state,
            "pending_actions": self.scheduler.pending,
            "actions_applied": self.actions_applied,
            "actions_dropped": self.actions_dropped,
            "lead_ms": self.lead_ms,
        }
