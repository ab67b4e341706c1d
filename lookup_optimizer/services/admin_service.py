"""Runtime-tunable settings, persisted so they survive restarts."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from lookup_optimizer.config import RUNTIME_TUNABLE_FIELDS

if TYPE_CHECKING:
    from lookup_optimizer.config import Settings
    from lookup_optimizer.services.option_store import OptionStore

logger = logging.getLogger(__name__)

RUNTIME_SETTINGS_OPTION = "runtime_settings"


def get_runtime_settings(settings: Settings) -> dict[str, Any]:
    """Return the current values of every runtime-tunable setting."""
    return {name: getattr(settings, name) for name in RUNTIME_TUNABLE_FIELDS}


async def load_runtime_settings(options: OptionStore, settings: Settings) -> None:
    """Apply persisted overrides on top of the environment configuration.

    Unknown names and values that no longer validate are skipped.
    """
    stored = await options.get(RUNTIME_SETTINGS_OPTION, {}) or {}
    for name, value in stored.items():
        if name not in RUNTIME_TUNABLE_FIELDS:
            logger.warning("Ignoring unknown runtime setting %r", name)
            continue
        try:
            setattr(settings, name, value)
        except ValidationError:
            logger.warning("Ignoring invalid stored value for %s: %r", name, value)
    try:
        settings.validate_cache_lifetimes()
    except ValueError:
        logger.warning("Stored cache lifetimes are inconsistent; reverting to defaults")
        for name in ("cache_ttl_seconds", "not_found_ttl_seconds"):
            setattr(settings, name, type(settings).model_fields[name].default)


async def update_runtime_settings(
    options: OptionStore,
    settings: Settings,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Validate and apply changes, then persist every tunable value.

    Either all changes are applied or none are. Raises ValueError (including
    pydantic's ValidationError) on invalid input.
    """
    unknown = sorted(set(changes) - set(RUNTIME_TUNABLE_FIELDS))
    if unknown:
        msg = f"Not runtime-tunable: {', '.join(unknown)}"
        raise ValueError(msg)

    previous = get_runtime_settings(settings)
    try:
        for name, value in changes.items():
            if value is not None:
                setattr(settings, name, value)
        settings.validate_cache_lifetimes()
    except ValueError:
        for name, value in previous.items():
            setattr(settings, name, value)
        raise

    current = get_runtime_settings(settings)
    await options.set(RUNTIME_SETTINGS_OPTION, current)
    logger.info("Runtime settings updated: %s", sorted(name for name in changes if changes[name] is not None))
    return current
