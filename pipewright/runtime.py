"""Composition root wiring stores, registries and services together."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .ai.chat import ChatService
from .ai.conversation import ConversationLoop
from .ai.providers import AIProvider, PydanticAIProvider
from .ai.tools import ToolExecutor, ToolManager, ToolRegistry, register_builtin_tools
from .ai.tools.builtin import skip_item_tools
from .config import PipewrightConfig, load_config
from .engine import FlowEngine
from .health import FlowHealthTracker
from .jobs import JobManager
from .packets import PacketStore, get_packet_store
from .persistence import get_repository
from .persistence.repository import JobRepository
from .queue import PromptQueue
from .recovery import JobRecovery
from .scheduling import BaseScheduler, get_scheduler
from .status import register_final_statuses
from .steps import AIStep, FetchStep, PublishStep, StepTypeRegistry, UpdateStep
from .worker import Worker

logger = logging.getLogger(__name__)

FetchStepFactory = Callable[[JobRepository], FetchStep]


class Runtime:
    """Every long-lived collaborator of one pipewright process."""

    def __init__(
        self,
        config: PipewrightConfig,
        repository: JobRepository,
        scheduler: BaseScheduler,
        packets: PacketStore,
        provider: Optional[AIProvider],
    ) -> None:
        settings = config.settings
        self.config = config
        self.repository = repository
        self.scheduler = scheduler
        self.packets = packets
        self.provider = provider

        self.prompt_queue = PromptQueue(repository)
        self.jobs = JobManager(repository, packets, self.prompt_queue, settings)
        self.health = FlowHealthTracker(repository)
        self.jobs.on_complete(self.health.on_job_complete)

        self.tools = ToolRegistry()
        register_builtin_tools(self.tools, repository)
        self.executor = ToolExecutor(
            self.tools,
            ToolManager(self.tools, settings.enabled_tools),
            timeout_seconds=settings.tool_timeout_seconds,
        )
        self.loop = ConversationLoop(
            self.executor,
            max_turns=settings.max_turns,
            provider_timeout_seconds=settings.provider_timeout_seconds,
        )

        self.steps = StepTypeRegistry()
        register_builtin_steps(self)

        self.engine = FlowEngine(
            repository, scheduler, packets, self.steps, self.jobs, config.intervals
        )
        self.recovery = JobRecovery(repository, self.jobs, packets)
        self.chat = ChatService(self.loop, self.executor, provider, settings) if provider else None
        self.worker = Worker(scheduler, self.engine)

    def register_fetch_step(
        self, factory: FetchStepFactory, handler_slugs: Iterable[str] = ()
    ) -> None:
        """Register the ``fetch`` step type and ``skip_item`` for its handlers."""
        self.steps.register("fetch", lambda: factory(self.repository))
        for slug in handler_slugs:
            self.tools.register_handler_tools(slug, skip_item_tools)


def register_builtin_steps(runtime: Runtime) -> None:
    settings = runtime.config.settings
    runtime.steps.register(
        "ai",
        lambda: AIStep(
            runtime.loop, runtime.executor, runtime.provider, runtime.prompt_queue, settings
        ),
    )
    runtime.steps.register("publish", PublishStep)
    runtime.steps.register("update", UpdateStep)


def build_runtime(
    config: Optional[PipewrightConfig] = None,
    repository: Optional[JobRepository] = None,
    scheduler: Optional[BaseScheduler] = None,
    packets: Optional[PacketStore] = None,
    provider: Optional[AIProvider] = None,
) -> Runtime:
    """Build a runtime from configuration, overriding any collaborator given."""
    config = config or load_config()
    register_final_statuses(config.extra_final_statuses)
    runtime = Runtime(
        config,
        repository or get_repository(),
        scheduler or get_scheduler(config=config),
        packets or get_packet_store(config.packet_storage),
        provider or PydanticAIProvider(),
    )
    logger.debug(f"Runtime ready step_types={runtime.steps.list()}")
    return runtime
