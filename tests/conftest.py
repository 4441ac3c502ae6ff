"""Shared fixtures: a scripted AI provider and a runtime wired for tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

import pipewright.persistence as persistence
from pipewright.ai.providers import ProviderResponse
from pipewright.config import EngineSettings, PipewrightConfig
from pipewright.contracts import DataPacket, ToolDefinition, ToolParameter
from pipewright.packets import InMemoryPacketStore
from pipewright.persistence import InMemoryJobRepository
from pipewright.runtime import Runtime, build_runtime
from pipewright.scheduling import InMemoryScheduler
from pipewright.steps import FetchStep

PUBLISH_HANDLER = "blog"
FETCH_HANDLER = "list_source"


class ScriptedProvider:
    """Replay canned responses and record every request."""

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    async def complete(self, messages, tools, provider, model) -> ProviderResponse:
        self.requests.append(
            {
                "messages": list(messages),
                "tools": sorted(tools),
                "provider": provider,
                "model": model,
            }
        )
        if not self.responses:
            return ProviderResponse(content="Nothing left to do.")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingTool:
    """Tool implementation remembering the parameters it was called with."""

    def __init__(self, result: Any = None, error: Optional[Exception] = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.result = result if result is not None else {"url": "https://blog.example/post/1"}
        self.error = error

    async def handle_tool_call(self, parameters: Dict[str, Any], tool: ToolDefinition):
        self.calls.append(parameters)
        if self.error is not None:
            raise self.error
        return {"success": True, "data": self.result}


class ListFetchStep(FetchStep):
    """Fetch one unseen item per run from ``handler_config["items"]``."""

    source_type = "list"

    async def fetch(self) -> List[DataPacket]:
        for item in self.handler_config.get("items", []):
            if await self.is_processed(item["id"]):
                continue
            await self.mark_processed(item["id"])
            if item.get("url"):
                await self.stage(source_url=item["url"])
            return [
                DataPacket.create(
                    type="fetch",
                    title=item["title"],
                    body=item["body"],
                    item_id=item["id"],
                    flow_step_id=self.flow_step_id,
                )
            ]
        return []


def publish_tools(handler_config, engine_data) -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name="publish_blog",
            class_ref="tests.publisher",
            description="Publish a post to the blog",
            parameters={
                "title": ToolParameter(type="string", required=True, description="Post title"),
                "content": ToolParameter(type="string", description="Post body"),
            },
        )
    ]


class Harness:
    def __init__(self, runtime: Runtime, provider: ScriptedProvider, publisher: RecordingTool):
        self.runtime = runtime
        self.provider = provider
        self.publisher = publisher

    @property
    def repository(self):
        return self.runtime.repository

    async def create_flow(
        self,
        items: Optional[List[Dict[str, Any]]] = None,
        user_message: Optional[str] = "Write a post about the item.",
        system_prompt: str = "Publish concise posts.",
    ):
        """Create a fetch -> ai -> publish pipeline and flow."""
        pipeline = await self.repository.create_pipeline(
            "news",
            {
                "fetch_step": {"step_type": "fetch"},
                "ai_step": {"step_type": "ai", "system_prompt": system_prompt},
                "publish_step": {"step_type": "publish"},
            },
        )
        steps: Dict[str, Dict[str, Any]] = {
            "fetch_1": {
                "step_type": "fetch",
                "execution_order": 0,
                "pipeline_step_id": "fetch_step",
                "handler_slug": FETCH_HANDLER,
                "handler_config": {"items": items or []},
            },
            "ai_1": {
                "step_type": "ai",
                "execution_order": 1,
                "pipeline_step_id": "ai_step",
                "user_message": user_message,
                "prompt_queue": [],
            },
            "publish_1": {
                "step_type": "publish",
                "execution_order": 2,
                "pipeline_step_id": "publish_step",
                "handler_slug": PUBLISH_HANDLER,
            },
        }
        flow = await self.repository.create_flow(pipeline.pipeline_id, "news-flow", {})
        for step in steps.values():
            step["flow_id"] = flow.flow_id
            step["pipeline_id"] = pipeline.pipeline_id
        await self.repository.update_flow_config(flow.flow_id, steps)
        return pipeline, await self.repository.get_flow(flow.flow_id)


@pytest.fixture
def make_harness():
    def build(responses: Optional[List[Any]] = None, **settings: Any) -> Harness:
        settings.setdefault("default_provider", "test")
        settings.setdefault("default_model", "scripted")
        config = PipewrightConfig(settings=EngineSettings(**settings))
        provider = ScriptedProvider(responses)
        runtime = build_runtime(
            config,
            repository=InMemoryJobRepository(),
            scheduler=InMemoryScheduler(),
            packets=InMemoryPacketStore(),
            provider=provider,
        )
        publisher = RecordingTool()
        runtime.tools.register_implementation("tests.publisher", lambda: publisher)
        runtime.tools.register_handler_tools(PUBLISH_HANDLER, publish_tools)
        runtime.register_fetch_step(ListFetchStep, handler_slugs=[FETCH_HANDLER])
        return Harness(runtime, provider, publisher)

    return build


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def recording_tool():
    return RecordingTool


@pytest.fixture(autouse=True)
def reset_repository_singleton():
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None
