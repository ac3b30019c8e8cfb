from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mindcheck.core.config import get_settings
from mindcheck.core.database import get_session_factory
from mindcheck.integrations.llm import AnalysisOrchestrator
from mindcheck.integrations.notifications import EnrichmentWebhook, ReportMailer
from mindcheck.integrations.storage import SessionArchiveStorage
from mindcheck.services.analysis import AnalysisValidator
from mindcheck.services.finalizer import SessionFinalizer
from mindcheck.services.reports import ReportAggregator, ReportService
from mindcheck.services.sessions import SessionStore

_orchestrator: AnalysisOrchestrator | None = None
_archive: SessionArchiveStorage | None = None
_webhook: EnrichmentWebhook | None = None
_mailer: ReportMailer | None = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def _get_orchestrator() -> AnalysisOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AnalysisOrchestrator(get_settings())
    return _orchestrator


async def get_session_store(
    session: AsyncSession = Depends(get_db_session),
) -> SessionStore:
    """Provide SessionStore bound to the request's database session."""
    settings = get_settings()
    return SessionStore(session, agent_label=settings.agent_display_name)


async def get_session_finalizer(
    store: SessionStore = Depends(get_session_store),
) -> SessionFinalizer:
    """Provide SessionFinalizer wired to the model providers and downstream sinks."""
    settings = get_settings()
    global _archive, _webhook
    if _archive is None:
        _archive = SessionArchiveStorage(settings)
    if _webhook is None:
        _webhook = EnrichmentWebhook(settings)
    return SessionFinalizer(
        store,
        _get_orchestrator(),
        validator=AnalysisValidator(),
        sinks=(_archive, _webhook),
        analysis_timeout=settings.analysis_timeout_seconds,
        capture_stop_grace=settings.capture_stop_grace_seconds,
        agent_label=settings.agent_display_name,
    )


async def get_report_service(
    store: SessionStore = Depends(get_session_store),
) -> ReportService:
    """Provide ReportService instance."""
    settings = get_settings()
    global _mailer
    if _mailer is None:
        _mailer = ReportMailer(settings)
    return ReportService(
        store,
        ReportAggregator(
            driver_limit=settings.report_driver_limit,
            summary_limit=settings.report_summary_limit,
        ),
        narrator=_get_orchestrator(),
        mailer=_mailer,
    )
