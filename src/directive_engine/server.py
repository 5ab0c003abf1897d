#!/usr/bin/env python3
"""
Directive Engine MCP Server

FastMCP server exposing context-aware directive retrieval via Model Context
Protocol.

Features:
- query_directives: ranked, token-budgeted context block for a task
- detect_context: layer/topic detection only
- get_health_status: provider, directive store and config diagnostics
- reload_directives: manual reload of the rule files
- Automatic reload via file watcher (debounced, atomic swap)

Tools hand the blocking engine calls to worker threads with asyncio.to_thread
so a slow provider never stalls the event loop.
"""

import asyncio
import logging
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from directive_engine.config import build_engine_config, load_config
from directive_engine.directive_store import RULE_FILE_PATTERNS, DirectiveStore
from directive_engine.health_check import get_health_status as collect_health_status
from directive_engine.service import DirectiveQueryService

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("directive-engine")

# Service state (built lazily so importing this module has no side effects)
_service: Optional[DirectiveQueryService] = None
_service_lock = threading.Lock()
_config_path: Optional[str] = None

# Reload state management
_reload_lock = threading.Lock()
_debounce_timer: Optional[threading.Timer] = None
_last_manual_reload = 0.0
MIN_MANUAL_RELOAD_INTERVAL = 10.0

# Shutdown management (graceful shutdown on SIGTERM/SIGINT)
_shutdown_event = threading.Event()


def get_service() -> DirectiveQueryService:
    """Return the shared query service, building it from configuration on first use."""
    global _service
    with _service_lock:
        if _service is None:
            engine_config = build_engine_config(load_config(_config_path))
            _service = DirectiveQueryService.from_config(engine_config)
        return _service


def set_service(service: Optional[DirectiveQueryService]) -> None:
    """Replace the shared query service (used at startup and by tests)."""
    global _service
    with _service_lock:
        _service = service


class DirectiveFileEventHandler(FileSystemEventHandler):
    """
    File watcher event handler for rule files.

    Implements debouncing to handle batch file changes efficiently.
    Only reacts to actual file modifications (created, modified, deleted, moved).
    """

    def __init__(self, debounce_seconds: float = 3.0):
        super().__init__()
        self.debounce_seconds = debounce_seconds
        self._pending_events: set[str] = set()

    def _should_process(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        src_path = Path(event.src_path)
        return any(src_path.match(pattern) for pattern in RULE_FILE_PATTERNS)

    def _handle_event(self, event: FileSystemEvent):
        if not self._should_process(event):
            return

        logger.info(f"File {event.event_type}: {Path(event.src_path).name}")
        self._pending_events.add(event.src_path)

        global _debounce_timer
        if _debounce_timer is not None:
            _debounce_timer.cancel()

        _debounce_timer = threading.Timer(self.debounce_seconds, self._trigger_reload)
        _debounce_timer.daemon = True
        _debounce_timer.start()

    def on_modified(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_created(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent):
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent):
        self._handle_event(event)

    def _trigger_reload(self):
        """Called by the debounce timer once no file events arrived for debounce_seconds."""
        if not self._pending_events:
            return

        event_count = len(self._pending_events)
        logger.info(f"Debounce period complete - reloading directives ({event_count} file(s) changed)")
        self._pending_events.clear()
        _reload_directive_store()


def _reload_directive_store() -> dict:
    """
    Reload rule files into a fresh store and swap it in.

    Serialized by a lock; queries keep using the old store until the swap.
    """
    with _reload_lock:
        try:
            start_time = time.time()
            service = get_service()
            old_store = service.store

            new_store = DirectiveStore(old_store.directives_path)
            new_count = new_store.load()

            old_count = len(old_store.directives)
            service.store = new_store

            elapsed_ms = (time.time() - start_time) * 1000
            logger.info(
                f"=== Reload complete: {old_count} → {new_count} directives ({elapsed_ms:.1f}ms) ==="
            )
            return {
                "success": True,
                "old_count": old_count,
                "new_count": new_count,
                "elapsed_ms": round(elapsed_ms, 1),
                "load_errors": list(new_store.load_errors),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        except Exception as e:
            logger.error(f"Reload failed: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }


# ============================================================================
# Tools
# ============================================================================


@mcp.tool()
async def query_directives(
    task_description: str,
    mode: str | None = None,
    max_items: int | None = None,
    token_budget: int | None = None,
    strict_layer: bool = False,
) -> dict:
    """
    Get the project directives relevant to a coding task.

    Args:
        task_description: Free-text description of the task
        mode: Optional focus mode: "architect", "code" or "debug"
        max_items: Maximum directives returned (1-100)
        token_budget: Token budget for the context block (100-10000)
        strict_layer: Only return directives declared for the detected layer

    Returns:
        Dictionary with:
        - context_block: Markdown block with MUST/SHOULD/MAY directives
        - citations: Source rule and section for each returned directive
        - diagnostics: Timings, counts, provider and token usage
        - error: Present only when a fallback block was returned

    Examples:
        query_directives("Add input validation to the signup endpoint")
        query_directives("Design the order aggregate", mode="architect", max_items=5)
    """
    try:
        logger.info(f"query_directives called: mode={mode}, max_items={max_items}")
        return await asyncio.to_thread(
            get_service().query_directives,
            task_description,
            max_items=max_items,
            token_budget=token_budget,
            strict_layer=strict_layer,
            mode=mode,
        )
    except Exception as e:
        logger.error(f"Error in query_directives: {e}", exc_info=True)
        return {"context_block": "", "citations": [], "diagnostics": {}, "error": str(e)}


@mcp.tool()
async def detect_context(text: str, return_keywords: bool = False) -> dict:
    """
    Detect the architectural layer and topics of a task description.

    Args:
        text: Task description (at most 10,000 characters)
        return_keywords: Include matched keywords and technologies

    Returns:
        Dictionary with detected_layer, topics, confidence, model_provider,
        fallback_used and optionally keywords/technologies. Invalid text
        yields the wildcard layer "*" with confidence 0.1.
    """
    try:
        return await asyncio.to_thread(get_service().detect_context, text, return_keywords=return_keywords)
    except Exception as e:
        logger.error(f"Error in detect_context: {e}", exc_info=True)
        return {"detected_layer": "*", "topics": [], "confidence": 0.1, "error": str(e)}


@mcp.tool()
async def get_health_status() -> dict:
    """
    Get health status of the directive engine.

    Returns:
        Dictionary with overall ("healthy" | "degraded" | "unhealthy"),
        providers, directives, config and timestamp.
    """
    try:
        service = get_service()
        return await asyncio.to_thread(collect_health_status, service.coordinator, service.store, _config_path)
    except Exception as e:
        logger.error(f"Error getting health status: {e}", exc_info=True)
        return {
            "overall": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


@mcp.tool()
async def reload_directives() -> dict:
    """
    Reload rule files from disk.

    Rate limited to one manual reload every 10 seconds.

    Returns:
        Dictionary with success, old_count, new_count, elapsed_ms and timestamp
    """
    global _last_manual_reload

    now = time.time()
    wait_s = MIN_MANUAL_RELOAD_INTERVAL - (now - _last_manual_reload)
    if wait_s > 0:
        return {
            "success": False,
            "error": f"Reload rate limited, retry in {wait_s:.1f}s",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    _last_manual_reload = now
    return await asyncio.to_thread(_reload_directive_store)


# ============================================================================
# Lifecycle
# ============================================================================


def _start_file_watcher(watch_path: Path):
    """Watch the rule directory until shutdown."""
    try:
        observer = Observer()
        observer.schedule(DirectiveFileEventHandler(debounce_seconds=3.0), str(watch_path), recursive=True)
        observer.start()
        logger.info(f"File watcher started: {watch_path}")

        while not _shutdown_event.is_set():
            _shutdown_event.wait(1)

        logger.info("File watcher shutting down...")
        observer.stop()
        observer.join(timeout=5)
        logger.info("File watcher stopped")

    except Exception as e:
        logger.error(f"File watcher error: {e}", exc_info=True)


def _signal_handler(sig, frame):
    """Graceful shutdown handler for SIGTERM/SIGINT signals."""
    logger.info(
        f"Received signal {sig} ({signal.Signals(sig).name}), initiating graceful shutdown..."
    )
    _shutdown_event.set()

    if _debounce_timer is not None:
        _debounce_timer.cancel()

    if _service is not None:
        _service.close()

    logger.info("Shutdown complete")
    sys.exit(0)


def main(config_path: Optional[str] = None, watch: bool = True):
    """Main entry point for the directive-engine-server command.

    Starts the MCP server with:
    - Configuration and directive loading
    - Provider health monitor
    - File watcher for auto-reload
    - Signal handlers for graceful shutdown
    """
    global _config_path
    _config_path = config_path

    config = load_config(config_path)
    engine_config = build_engine_config(config)
    level = getattr(logging, engine_config.log_level, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info("=== Starting Directive Engine MCP Server ===")
    service = DirectiveQueryService.from_config(engine_config)
    set_service(service)

    directive_count = len(service.store.directives)
    logger.info(f"Directives path: {service.store.directives_path}")
    logger.info(f"Loaded {directive_count} directives")
    logger.info(f"Detection providers: {' → '.join(service.coordinator.provider_names)}")
    if directive_count == 0:
        logger.warning("No directives loaded; queries will return empty context blocks")

    service.coordinator.start_health_monitor()

    watch_path = service.store.directives_path
    if watch and watch_path is not None and watch_path.exists():
        watcher_thread = threading.Thread(
            target=_start_file_watcher, args=(watch_path,), daemon=True, name="FileWatcher"
        )
        watcher_thread.start()

    logger.info("MCP server ready - listening for tool calls")
    mcp.run()


if __name__ == "__main__":
    main()
