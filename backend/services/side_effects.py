"""
Fire-and-forget dispatch.

Jobs run after the response, either in-process through FastAPI's
``BackgroundTasks`` or on the RQ side-effect queue. A failing job is logged
and dropped; it never reaches the request that scheduled it.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks
from rq import Retry

from ..config import settings
from ..rq_connection import get_side_effect_queue

logger = logging.getLogger(__name__)


def run_guarded(job: Callable[..., Any], *args: Any) -> None:
    try:
        job(*args)
    except Exception:
        logger.exception("Side effect %s%r failed", getattr(job, "__name__", job), args)


def fire_and_forget(background_tasks: Optional[BackgroundTasks], job: Callable[..., Any], *args: Any) -> None:
    """Schedule ``job(*args)``; scheduling errors are logged, never raised."""
    if settings.SIDE_EFFECT_BACKEND == "rq":
        try:
            get_side_effect_queue().enqueue(
                job,
                *args,
                retry=Retry(max=settings.SIDE_EFFECT_MAX_RETRIES),
            )
            return
        except Exception:
            # Queue unreachable: still run it here rather than lose it.
            logger.exception("Could not enqueue %s, running inline", job.__name__)

    if background_tasks is None:
        run_guarded(job, *args)
    else:
        background_tasks.add_task(run_guarded, job, *args)
