"""Construction of the export collaborators and their FastAPI dependencies."""
from typing import Optional

from fastapi import Request

from app.core.settings import settings
from app.jobs.export_scheduler import ExportScheduler
from app.services.ads_data import FacebookAdsProvider
from app.services.config_store import SqlConfigStore
from app.services.export_service import ExportRunner
from app.services.sheets import GoogleSheetsSink
from app.services.timezones import server_zone
from db import SessionLocal


def build_export_runner(session_factory=SessionLocal) -> ExportRunner:
    return ExportRunner(
        store=SqlConfigStore(session_factory),
        ads=FacebookAdsProvider(api_version=settings.META_API_VERSION),
        sheets=GoogleSheetsSink(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            token_url=settings.GOOGLE_TOKEN_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        ),
        server_tz=server_zone(settings.EXPORT_SERVER_TIMEZONE),
        max_workers=settings.EXPORT_FETCH_WORKERS,
    )


def build_export_scheduler(runner: ExportRunner) -> ExportScheduler:
    return ExportScheduler(
        store=runner.store,
        runner=runner,
        cron=settings.EXPORT_SCHEDULER_CRON,
        server_tz=runner.server_tz,
    )


async def get_export_runner(request: Request) -> ExportRunner:
    """Provide the app-wide ExportRunner (built lazily if startup did not)."""
    runner = getattr(request.app.state, "export_runner", None)
    if runner is None:
        runner = build_export_runner()
        request.app.state.export_runner = runner
    return runner


async def get_export_scheduler(request: Request) -> Optional[ExportScheduler]:
    return getattr(request.app.state, "export_scheduler", None)
