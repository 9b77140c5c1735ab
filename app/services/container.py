"""
Service Wiring

Builds the pipeline's object graph once per process (in the FastAPI
lifespan). Routers receive it through a dependency that main.py overrides.
"""

import asyncpg
from typing import Optional

from app.services.event_ingestion import EventIngestion
from app.services.github_client import GitHubClient
from app.services.http import HttpClientFactory, get_http_factory
from app.services.orchestrator import ValidationOrchestrator
from app.services.pipeline_runner import PipelineRunner
from app.services.project_registry import ProjectRegistryStore
from app.services.railway_client import RailwayClient
from app.services.review_agent import LLMReviewAgent, OpenAITextGenerator
from app.services.sequence_allocator import SequenceAllocator
from app.services.state_ledger import StateLedger
from app.services.status_reporter import StatusReporter
from app.services.task_board import TrelloTaskBoard
from app.services.validation_stages import ValidationStageRunner


class PipelineServices:
    """Everything the routers need, built around one connection pool."""

    def __init__(
        self,
        ledger: StateLedger,
        projects: ProjectRegistryStore,
        orchestrator: ValidationOrchestrator,
        ingestion: EventIngestion,
        runner: PipelineRunner
    ):
        self.ledger = ledger
        self.projects = projects
        self.orchestrator = orchestrator
        self.ingestion = ingestion
        self.runner = runner

    async def close(self):
        await self.runner.shutdown()


def build_services(db_pool: asyncpg.Pool, http: Optional[HttpClientFactory] = None) -> PipelineServices:
    """Wire the production pipeline."""
    http = http or get_http_factory()

    ledger = StateLedger(db_pool)
    projects = ProjectRegistryStore(db_pool)
    github = GitHubClient(http=http)

    orchestrator = ValidationOrchestrator(
        ledger=ledger,
        allocator=SequenceAllocator(ledger),
        stages=ValidationStageRunner(github, RailwayClient(http=http), ledger),
        reporter=StatusReporter(github),
        github=github,
        review_agent=LLMReviewAgent(OpenAITextGenerator(http=http)),
        task_board=TrelloTaskBoard(http=http),
    )

    runner = PipelineRunner()
    ingestion = EventIngestion(ledger, projects, orchestrator, runner)

    return PipelineServices(ledger, projects, orchestrator, ingestion, runner)
