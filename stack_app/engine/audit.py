"""Human-readable step log attached to every layer the pipeline builds."""

from datetime import datetime, timezone
import logging
import platform

logger = logging.getLogger(__name__)


def start_audit(source: str) -> list[str]:
    return [f"Layer source: {source}",
            f"Started: {datetime.now(timezone.utc).isoformat()}",
            f"Platform: {platform.platform()}"]


def log_step(audit: list[str], stage: str, msg: str, **details) -> None:
    if details:
        extras = ", ".join(f"{key}={value}" for key, value in details.items())
        msg = f"{msg} ({extras})"
    line = f"[{stage}] {msg}"
    logger.debug(line)
    audit.append(line)
