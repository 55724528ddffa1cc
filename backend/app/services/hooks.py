"""
Post-run hooks, fired once after an import session completes.

Hooks are side effects (e.g. kicking off a database backup after a large
import). They run best-effort: a failing hook is logged and never undoes
or blocks the completed session.
"""

import logging
from typing import Protocol

import httpx

from app.core.config import settings
from app.schemas.imports import ImportReport

logger = logging.getLogger(__name__)


class PostRunHook(Protocol):
    name: str

    async def __call__(self, report: ImportReport) -> None:
        ...


class BackupHook:
    """POST the finished report to BACKUP_HOOK_URL."""

    name = "backup"

    def __init__(self, url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url if url is not None else settings.BACKUP_HOOK_URL
        self.transport = transport

    async def __call__(self, report: ImportReport) -> None:
        if not self.url:
            return
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
            response = await client.post(
                self.url,
                json={"event": "import.completed", "report": report.model_dump(mode="json")},
            )
            response.raise_for_status()
        logger.info("Backup hook notified for import session %s", report.session_id)


def default_hooks() -> list[PostRunHook]:
    return [BackupHook()]


async def run_post_run_hooks(report: ImportReport, hooks: list[PostRunHook]) -> list[str]:
    """Run every hook; returns the names of the hooks that failed."""
    failed: list[str] = []
    for hook in hooks:
        try:
            await hook(report)
        except httpx.HTTPError:
            logger.warning(
                "Post-run hook %s failed for import session %s",
                hook.name, report.session_id, exc_info=True,
            )
            failed.append(hook.name)
    return failed
