"""Change detection for tools.json.

Two channels report changes: filesystem events from watchdog and a
modification-time poll for filesystems where events are unreliable (network
mounts, some containers). Both feed a single debounced reload.
"""

import asyncio
import contextlib
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..runtime.exceptions import ConfigNotFoundError
from ..runtime.logging_config import get_logger
from .loader import load_tools_config
from .models import ToolsConfig

logger = get_logger("watcher")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_DEBOUNCE_DELAY = 0.3
DEFAULT_SETTLE_DELAY = 0.1
OBSERVER_JOIN_TIMEOUT = 5.0


class WatcherState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"


class WatcherEventKind(Enum):
    CHANGED = "changed"
    DELETED = "deleted"
    INVALID = "invalid"


@dataclass
class WatcherEvent:
    """Notification sent to watcher subscribers."""

    kind: WatcherEventKind
    config: Optional[ToolsConfig] = None
    errors: List[str] = field(default_factory=list)
    error: Optional[Exception] = None


WatcherHandler = Callable[[WatcherEvent], None]


class _ToolsFileEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one file to the watcher's event loop."""

    def __init__(self, watcher: "ToolsWatcher", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._watcher = watcher
        self._loop = loop

    def _matches(self, path) -> bool:
        return bool(path) and Path(os.fsdecode(path)) == self._watcher.path

    def _forward(self, callback: Callable[[str], None], kind: str) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, kind)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._forward(self._watcher._on_file_event, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._forward(self._watcher._on_file_event, "modified")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._forward(self._watcher._on_file_event, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Editors that save via rename produce a move onto the file.
        if self._matches(getattr(event, "dest_path", None)):
            self._forward(self._watcher._on_file_event, "created")
        elif self._matches(event.src_path):
            self._forward(self._watcher._on_file_event, "deleted")


class ToolsWatcher:
    """Watches one tools.json file and reports changes to subscribers.

    Subscribers receive WatcherEvent objects:

    - CHANGED with the newly loaded config after every successful load
    - INVALID with the error strings when a load fails; the last good
      config is kept
    - DELETED once when the file disappears
    """

    def __init__(
        self,
        tools_json_path: Union[str, Path],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        """Initialize the watcher.

        Args:
            tools_json_path: Path of the tools.json file to watch
            poll_interval: Seconds between modification-time polls
            debounce_delay: Quiet period in seconds before a reload runs
            settle_delay: Seconds the file must stay unchanged before loading
        """
        self.path = Path(tools_json_path).resolve()
        self.poll_interval = poll_interval
        self.debounce_delay = debounce_delay
        self.settle_delay = settle_delay

        self._state = WatcherState.STOPPED
        self._handlers: List[WatcherHandler] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._last_mtime: Optional[int] = None
        self._last_config: Optional[ToolsConfig] = None

        self._observer: Optional[Observer] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._reload_task: Optional[asyncio.Task] = None
        self._reload_pending = False

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def last_config(self) -> Optional[ToolsConfig]:
        """The last configuration that loaded successfully."""
        return self._last_config

    def subscribe(self, handler: WatcherHandler) -> Callable[[], None]:
        """Register a handler for watcher events.

        Returns:
            A callable that removes the handler
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def start(self) -> None:
        """Load the file once, then start both change detection channels.

        When this returns, subscribers have already seen the initial config.
        """
        if self._state is not WatcherState.STOPPED:
            logger.warning("Watcher is already running")
            return

        self._state = WatcherState.STARTING
        self._loop = asyncio.get_running_loop()
        logger.info(f"Watching for changes: {self.path}")

        await self._load_and_apply()
        if self._state is not WatcherState.STARTING:
            return  # stopped during the initial load

        await self._ensure_event_channel()
        self._poll_task = self._loop.create_task(self._poll_loop())
        logger.info(
            f"Polling fallback enabled ({int(self.poll_interval * 1000)}ms interval)"
        )
        self._state = WatcherState.ACTIVE

    async def stop(self) -> None:
        """Stop both channels and any pending reload. Safe to call twice."""
        if self._state is WatcherState.STOPPED:
            return
        self._state = WatcherState.STOPPED

        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        self._reload_pending = False

        current = asyncio.current_task()
        for task in (self._poll_task, self._reload_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._poll_task = None
        self._reload_task = None

        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join, OBSERVER_JOIN_TIMEOUT)

        logger.info("Watcher stopped")

    # Event channel

    async def _ensure_event_channel(self) -> None:
        """Arm the filesystem observer when the directory exists.

        Called on start and on every poll, so a directory that appears later
        gets watched and one that disappears is released.
        """
        directory = self.path.parent

        if self._observer is not None:
            if directory.is_dir():
                return
            logger.info(f"Directory {directory} disappeared, releasing file events")
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, OBSERVER_JOIN_TIMEOUT)

        if not directory.is_dir():
            return

        observer = Observer()
        try:
            observer.schedule(
                _ToolsFileEventHandler(self, self._loop), str(directory), recursive=False
            )
            observer.start()
        except OSError as e:
            logger.warning(f"File events unavailable for {directory}, polling only: {e}")
            return
        self._observer = observer
        logger.debug(f"File events enabled for {directory}")

    def _on_file_event(self, kind: str) -> None:
        if self._state is WatcherState.STOPPED:
            return
        logger.debug(f"Detected {kind} event")
        # Deletions go through the debounce too: editors often delete and
        # recreate the file within one save.
        self._schedule_reload()

    # Poll channel

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self._poll_once()

    async def _poll_once(self) -> None:
        await self._ensure_event_channel()

        mtime = self._stat_mtime()
        if mtime is None:
            if self._last_mtime is not None:
                self._mark_deleted()
            return

        if mtime != self._last_mtime:
            logger.info("Poll detected change")
            self._last_mtime = mtime
            self._schedule_reload()

    # Debounced reload

    def _schedule_reload(self) -> None:
        """Request a reload once no further request arrives for debounce_delay."""
        if self._state is WatcherState.STOPPED or self._loop is None:
            return
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = self._loop.call_later(
            self.debounce_delay, self._debounce_elapsed
        )

    def _debounce_elapsed(self) -> None:
        self._debounce_handle = None
        if self._reload_task is not None and not self._reload_task.done():
            self._reload_pending = True
            return
        self._reload_task = self._loop.create_task(self._run_reloads())

    async def _run_reloads(self) -> None:
        """Run reloads one at a time until no request is pending."""
        while True:
            self._reload_pending = False
            await self._reload()
            if not self._reload_pending or self._state is WatcherState.STOPPED:
                return

    async def _reload(self) -> None:
        if not self.path.exists():
            self._mark_deleted()
            return

        if not await self._is_settled():
            logger.debug("tools.json still changing, waiting")
            self._schedule_reload()
            return

        await self._load_and_apply()

    async def _is_settled(self) -> bool:
        before = self._stat_signature()
        await asyncio.sleep(self.settle_delay)
        return before == self._stat_signature()

    async def _load_and_apply(self) -> None:
        if not self.path.exists():
            logger.info("tools.json does not exist")
            return

        self._last_mtime = self._stat_mtime()

        result = await asyncio.to_thread(load_tools_config, self.path)
        if self._state is WatcherState.STOPPED:
            return

        if not result.success:
            if isinstance(result.error, ConfigNotFoundError):
                self._mark_deleted()
                return
            logger.error(f"Failed to load tools.json: {', '.join(result.errors)}")
            self._emit(
                WatcherEvent(
                    kind=WatcherEventKind.INVALID,
                    errors=result.errors,
                    error=result.error,
                )
            )
            return

        logger.info(f"Loaded {len(result.config.tools)} tools")
        self._last_config = result.config
        self._emit(WatcherEvent(kind=WatcherEventKind.CHANGED, config=result.config))

    def _mark_deleted(self) -> None:
        """Report a deletion once per disappearance of the file."""
        if self._last_mtime is None and self._last_config is None:
            return
        logger.info("tools.json deleted")
        self._last_mtime = None
        self._last_config = None
        self._emit(WatcherEvent(kind=WatcherEventKind.DELETED))

    def _emit(self, event: WatcherEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Watcher handler {handler!r} failed")

    def _stat_mtime(self) -> Optional[int]:
        try:
            return self.path.stat().st_mtime_ns
        except OSError:
            return None

    def _stat_signature(self):
        try:
            stat = self.path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size)
