"""
Health check module for the directive engine.

Provides health status checks for diagnostics and monitoring: detection
providers, the directive store and configuration validity, rolled up into
one overall status.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from directive_engine.config import build_engine_config, load_config
from directive_engine.directive_store import DirectiveStore
from directive_engine.errors import ConfigurationError
from directive_engine.fallback import FallbackCoordinator
from directive_engine.models import HealthStatus

logger = logging.getLogger(__name__)

HEALTHY_STATUSES = ("healthy", "valid")
UNHEALTHY_STATUSES = ("unhealthy", "invalid", "missing", "error")


def check_providers(coordinator: FallbackCoordinator, refresh: bool = True) -> dict[str, Any]:
    """
    Check detection provider health.

    Args:
        coordinator: Fallback coordinator owning the providers
        refresh: Check providers now instead of reading the last recorded health

    Returns:
        Dictionary with:
        - status: "healthy" | "degraded" | "unhealthy"
        - primary: Primary provider name
        - providers: Per-provider health and circuit state
        - reason: Explanation
    """
    try:
        health = coordinator.check_health_now() if refresh else coordinator.get_health()
    except Exception as e:
        logger.error(f"Error checking provider health: {e}")
        return {"status": "unhealthy", "primary": coordinator.primary, "providers": {}, "reason": str(e)}

    statuses = [h.status for h in health.values() if h is not None]
    available = [s for s in statuses if s is not HealthStatus.UNAVAILABLE]

    if statuses and all(s is HealthStatus.HEALTHY for s in statuses):
        status, reason = "healthy", "All providers available"
    elif available:
        status = "degraded"
        reason = f"{len(available)}/{len(health)} providers available"
    elif not statuses:
        status, reason = "degraded", "Providers not checked yet"
    else:
        status, reason = "unhealthy", "No detection provider available"

    return {
        "status": status,
        "primary": coordinator.primary,
        "providers": coordinator.get_status(),
        "reason": reason,
    }


def check_directive_store(store: DirectiveStore) -> dict[str, Any]:
    """
    Check directive store state.

    Returns:
        Dictionary with:
        - status: "healthy" | "degraded" | "empty" | "missing"
        - path: Directives path
        - rules / directives: Loaded counts
        - reason: Explanation
    """
    stats = store.stats()
    base = {"path": stats["path"], "rules": stats["rules"], "directives": stats["directives"]}

    if store.directives_path is None or not store.directives_path.exists():
        return {**base, "status": "missing", "reason": "Directives path not found"}
    if stats["directives"] == 0:
        return {**base, "status": "empty", "reason": "No directives loaded"}
    if stats["load_errors"]:
        return {
            **base,
            "status": "degraded",
            "reason": f"{len(stats['load_errors'])} rule files failed to load",
            "load_errors": stats["load_errors"],
        }
    return {**base, "status": "healthy", "reason": f"{stats['directives']} directives loaded"}


def check_config_validity(config_path: Optional[str] = None) -> dict[str, Any]:
    """
    Check configuration validity.

    Returns:
        Dictionary with:
        - status: "valid" | "invalid"
        - path: Explicit config path, if any
        - reason: Explanation
        - primary_provider: Configured primary provider (if valid)
    """
    try:
        engine_config = build_engine_config(load_config(config_path))
    except ConfigurationError as e:
        return {"status": "invalid", "path": config_path, "reason": str(e), "primary_provider": None}

    return {
        "status": "valid",
        "path": config_path,
        "reason": "Configuration is valid",
        "primary_provider": engine_config.providers.primary,
    }


def get_health_status(
    coordinator: FallbackCoordinator,
    store: DirectiveStore,
    config_path: Optional[str] = None,
) -> dict[str, Any]:
    """
    Get comprehensive health status of the engine.

    Returns:
        Dictionary with:
        - overall: "healthy" | "degraded" | "unhealthy"
        - providers: Provider health check
        - directives: Directive store check
        - config: Config validity check
        - timestamp: Check timestamp (ISO format)
    """
    providers = check_providers(coordinator)
    directives = check_directive_store(store)
    config = check_config_validity(config_path)

    statuses = [providers.get("status"), directives.get("status"), config.get("status")]

    if all(s in HEALTHY_STATUSES for s in statuses):
        overall = "healthy"
    elif any(s in UNHEALTHY_STATUSES for s in statuses):
        overall = "unhealthy"
    else:
        overall = "degraded"

    return {
        "overall": overall,
        "providers": providers,
        "directives": directives,
        "config": config,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
