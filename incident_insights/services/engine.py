"""Wire settings into the orchestrators (used by the API, the CLI and the scheduler)."""

import logging

from pydantic import BaseModel, ConfigDict

from incident_insights.ai.client import LangChainGenerator, TextGenerator
from incident_insights.analytics.aggregator import Aggregator
from incident_insights.cache.insight_cache import InsightCache
from incident_insights.config import EngineConfig, Settings
from incident_insights.services.classification import SeverityClassifier
from incident_insights.services.insights import InsightService
from incident_insights.services.reports import ReportService
from incident_insights.storage.incidents import HttpIncidentSource, IncidentSource, SqliteIncidentSource
from incident_insights.storage.store import get_initialized_connection

logger = logging.getLogger(__name__)


class Engine(BaseModel):
    """The services that make up one running insight engine."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    config: EngineConfig
    db_path: str
    cache: InsightCache
    insights: InsightService
    reports: ReportService
    classifier: SeverityClassifier


def build_source(settings: Settings) -> IncidentSource:
    if settings.incident_api_url:
        logger.info("Reading incidents from %s", settings.incident_api_url)
        return HttpIncidentSource(settings.incident_api_url)
    return SqliteIncidentSource(settings.database_path)


def build_engine(
    settings: Settings,
    generator: TextGenerator | None = None,
    source: IncidentSource | None = None,
) -> Engine:
    """Build the engine from settings. ``generator`` and ``source`` override the defaults."""
    config = EngineConfig.from_settings(settings)
    db_path = settings.database_path

    # Fail fast on an unusable database path
    get_initialized_connection(db_path).close()

    aggregator = Aggregator(source or build_source(settings), timezone=config.reference_timezone)
    backend = generator or LangChainGenerator.from_settings(settings)
    cache = InsightCache(db_path)
    use_ai = generator is not None or settings.ai_configured
    if not use_ai:
        logger.warning("No API key for %s; severity classification will use the category table", settings.llm_provider)
    return Engine(
        config=config,
        db_path=db_path,
        cache=cache,
        insights=InsightService(aggregator, backend, cache, config, db_path=db_path),
        reports=ReportService(aggregator, backend, db_path=db_path),
        classifier=SeverityClassifier(backend, db_path=db_path, use_ai=use_ai),
    )
