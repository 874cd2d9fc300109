"""Map a raw build result to the state reported to the server."""

from __future__ import annotations

import logging

from .config import EffectiveConfig
from .models import BuildResult, NotificationState

logger = logging.getLogger(__name__)


def map_state(
    result: BuildResult | None,
    config: EffectiveConfig,
    disable_in_progress: bool,
) -> NotificationState | None:
    """Return the state to report, or None when nothing should be sent.

    ``disable_in_progress`` is the calling hook's context, not the config flag:
    the freestyle post-build hook passes the configured value, the pipeline
    step always passes False.
    """
    if result is None:
        if disable_in_progress:
            return None
        return NotificationState.INPROGRESS
    if result == BuildResult.SUCCESS:
        return NotificationState.SUCCESSFUL
    if config.only_report_success:
        return None
    if result == BuildResult.UNSTABLE and config.consider_unstable_as_success:
        logger.info("UNSTABLE reported as SUCCESSFUL")
        return NotificationState.SUCCESSFUL
    if result == BuildResult.ABORTED and disable_in_progress:
        logger.info("ABORTED")
        return None
    if result == BuildResult.NOT_BUILT:
        logger.info("NOT BUILT")
        return None
    return NotificationState.FAILED
