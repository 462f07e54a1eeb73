"""
Deadline and failure boundary for the JSON telemetry endpoints.

Heartbeat, geo, UTM and conversion beacons are fire-and-forget, so every
failure below the adapter becomes ``200 {success: false, reason}``. Only
``ValidationError`` escapes; the app maps it to a 400.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import TelemetryError, ValidationError

logger = logging.getLogger(__name__)


def failure(reason: str) -> Dict[str, Any]:
    return {"success": False, "reason": reason}


async def in_band(kind: str, key: Optional[str], call: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
    """Await ``call`` under the request deadline, reporting failures in-band."""
    try:
        return await asyncio.wait_for(call, timeout=settings.tracking_deadline_seconds)
    except ValidationError:
        raise
    except asyncio.TimeoutError:
        # Must stay ahead of OSError: TimeoutError subclasses it
        logger.warning("[%s] deadline exceeded for %s", kind, key)
        return failure("deadline_exceeded")
    except TelemetryError as exc:
        logger.error("[%s] failed for %s: %s", kind, key, exc)
        return failure(exc.reason)
    except SQLAlchemyError as exc:
        logger.error("[%s] store write failed for %s: %s", kind, key, exc)
        return failure("db_write_failed")
    except OSError as exc:
        logger.error("[%s] store unreachable for %s: %s", kind, key, exc)
        return failure("upstream_unavailable")
    except Exception as exc:
        logger.exception("[%s] unexpected error for %s: %s", kind, key, exc)
        return failure("internal_error")
