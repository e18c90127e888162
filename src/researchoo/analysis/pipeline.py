"""Three-stage analysis of one source file.

1. Main stage (mandatory): transcript, tags, highlights, insights, summary.
2. Affinity stage (best-effort): theme/subcluster hierarchy over highlights.
3. Insights stage (best-effort): per-theme table, word cloud, pattern chart.

Stages 2 and 3 consume the highlights of stage 1 and are skipped to an
empty result on any failure. Stage 1 failures, and ingestion failures,
abort the run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from researchoo import config
from researchoo.ai import prompts
from researchoo.ai.client import StructuredClient
from researchoo.ai.ingest import ContentHandle, ContentIngestor, ProgressCallback
from researchoo.ai.provider import GeminiProvider, StructuredProvider
from researchoo.ai.schemas import AFFINITY_SCHEMA, INSIGHTS_SCHEMA, MAIN_SCHEMA
from researchoo.analysis.merge import merge
from researchoo.analysis.parse import (
    AffinityResult,
    InsightsResult,
    MainResult,
    parse_affinity,
    parse_insights,
    parse_main,
)
from researchoo.errors import QuotaExhaustedError, is_quota_error
from researchoo.models import ResearchData

logger = logging.getLogger(__name__)

MAIN_TEMPERATURE = 0.2
AFFINITY_TEMPERATURE = 0.3
INSIGHTS_TEMPERATURE = 0.3

QUOTA_STAGE_ERROR = "quota_exhausted"


@dataclass
class StageOutcome:
    """Whether a best-effort stage produced data, for logging and the API."""

    name: str
    ok: bool
    error: str | None = None


class AnalysisPipeline:
    """Runs ingestion and the three generation stages for one file."""

    def __init__(
        self,
        provider: StructuredProvider | None = None,
        ingestor: ContentIngestor | None = None,
        client: StructuredClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider or GeminiProvider()
        self._ingestor = ingestor or ContentIngestor(self._provider, sleep=sleep)
        self._client = client or StructuredClient(self._provider, sleep=sleep)
        self.outcomes: list[StageOutcome] = []

    @property
    def quota_degraded(self) -> bool:
        """True when a best-effort stage was skipped because the quota ran out."""
        return any(o.error == QUOTA_STAGE_ERROR for o in self.outcomes)

    def run(
        self,
        path: Path,
        file_type: str,
        declared_mime: str | None = None,
        language: str | None = None,
        on_progress: ProgressCallback | None = None,
        prefix: str | None = None,
    ) -> ResearchData:
        """Analyze ``path`` and return the merged document.

        ``on_progress`` receives "uploading"/"processing" from ingestion and
        "uploaded" only once all stages and the merge have finished.

        Raises:
            QuotaExhaustedError: The service quota ran out during ingestion or
                the main stage.
            IngestionError: The file could not be ingested.
            ParseError: The main stage response was unusable.
        """
        language = language or config.DEFAULT_LANGUAGE
        self.outcomes = []
        t0 = time.perf_counter()
        logger.info("Analyzing %s (%s, language=%s)", path.name, file_type, language)

        try:
            content = self._ingestor.ingest(path, file_type, declared_mime, on_progress=on_progress)
            main = self.run_main(content, language)
        except QuotaExhaustedError:
            raise
        except Exception as e:
            if is_quota_error(e):
                raise QuotaExhaustedError(e) from e
            raise

        if on_progress:
            on_progress("processing", 60)
        affinity = self.run_affinity(main, language)
        if on_progress:
            on_progress("processing", 80)
        insights = self.run_insights(main, language)

        data = merge(main, affinity, insights, prefix=prefix)
        logger.info(
            "Analysis of %s complete: %d tags, %d highlights, %d clusters, %d insight rows (%.2fs)",
            path.name, len(data.tags), len(data.highlights), len(data.clusters),
            len(data.insights.table), time.perf_counter() - t0,
        )
        if on_progress:
            on_progress("uploaded", 100)
        return data

    def run_main(self, content: ContentHandle, language: str) -> MainResult:
        raw = self._client.generate(
            [content, prompts.MAIN_USER_MESSAGE],
            system_prompt=prompts.main_prompt(language),
            schema=MAIN_SCHEMA,
            temperature=MAIN_TEMPERATURE,
            label="Main analysis",
            model=config.GEMINI_MODEL,
        )
        main = parse_main(raw)
        self.outcomes.append(StageOutcome("main", True))
        return main

    def run_affinity(self, main: MainResult, language: str) -> AffinityResult:
        """Cluster the highlights; an empty result on any failure."""
        if not main.highlights:
            self.outcomes.append(StageOutcome("affinity", True))
            return AffinityResult()
        try:
            raw = self._client.generate(
                [prompts.highlights_message(_highlight_payload(main), language)],
                system_prompt=prompts.affinity_prompt(language),
                schema=AFFINITY_SCHEMA,
                temperature=AFFINITY_TEMPERATURE,
                label="Affinity mapping",
                model=config.GEMINI_REASON_MODEL,
            )
            result = parse_affinity(raw)
        except Exception as e:
            logger.warning("Affinity stage failed, continuing without clusters: %s", e)
            self.outcomes.append(StageOutcome("affinity", False, _stage_error(e)))
            return AffinityResult()
        self.outcomes.append(StageOutcome("affinity", True))
        return result

    def run_insights(self, main: MainResult, language: str) -> InsightsResult:
        """Synthesize deep insights; an empty result on any failure."""
        if not main.highlights:
            self.outcomes.append(StageOutcome("insights", True))
            return InsightsResult()
        try:
            raw = self._client.generate(
                [prompts.highlights_message(_highlight_payload(main), language)],
                system_prompt=prompts.insights_prompt(language),
                schema=INSIGHTS_SCHEMA,
                temperature=INSIGHTS_TEMPERATURE,
                label="Deep insights",
                model=config.GEMINI_REASON_MODEL,
            )
            result = parse_insights(raw)
        except Exception as e:
            logger.warning("Insights stage failed, continuing without deep insights: %s", e)
            self.outcomes.append(StageOutcome("insights", False, _stage_error(e)))
            return InsightsResult()
        self.outcomes.append(StageOutcome("insights", True))
        return result


def _highlight_payload(main: MainResult) -> list[dict]:
    labels = {t.id: t.label for t in main.tags}
    return [
        {"id": h.id, "text": h.text, "tag": labels.get(h.tag_id, "")}
        for h in main.highlights
    ]


def _stage_error(e: Exception) -> str:
    if is_quota_error(e):
        return QUOTA_STAGE_ERROR
    return str(e)
