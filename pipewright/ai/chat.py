"""Chat sessions driven turn by turn on top of the conversation loop."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field

from ..config import EngineSettings
from ..contracts import AgentType, ConversationMessage, ToolCall, utcnow
from ..errors import SessionNotFound
from ..logs import agent_scope
from .conversation import ConversationLoop, ConversationResult, ConversationState
from .providers import AIProvider
from .tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


class ChatResponse(BaseModel):
    session_id: str
    response: str = ""
    completed: bool = False
    turn_count: int = 0
    max_turns_reached: bool = False
    last_tool_calls: List[ToolCall] = Field(default_factory=list)
    error: Optional[str] = None


class ChatSession(BaseModel):
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: Literal["processing", "completed"] = "processing"
    provider: str = ""
    model: str = ""
    state: ConversationState = Field(default_factory=ConversationState)
    # turn budget of the current user message; turn counts span the session
    turn_limit: int = 0
    last_response: Optional[ChatResponse] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SessionStore(Protocol):
    async def get(self, session_id: str) -> Optional[ChatSession]:
        """Return a stored session."""

    async def save(self, session: ChatSession) -> None:
        """Persist a session."""


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, ChatSession] = {}

    async def get(self, session_id: str) -> Optional[ChatSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def save(self, session: ChatSession) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)


class ChatService:
    """Operator chat with the global and chat-only tools."""

    def __init__(
        self,
        loop: ConversationLoop,
        executor: ToolExecutor,
        provider: AIProvider,
        settings: Optional[EngineSettings] = None,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._loop = loop
        self._executor = executor
        self._provider = provider
        self._settings = settings or EngineSettings()
        self._store = store or InMemorySessionStore()

    async def send_message(
        self,
        message: str,
        session_id: Optional[str] = None,
        single_turn: bool = True,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> ChatResponse:
        session = await self._store.get(session_id) if session_id else None
        if session_id and session is None:
            raise SessionNotFound(session_id)
        if session is None:
            session = ChatSession(
                provider=provider or self._settings.default_provider,
                model=model or self._settings.default_model,
            )
            logger.info(f"Chat session started session_id={session.session_id}")

        session.state.messages.append(ConversationMessage(role="user", content=message))
        session.state.completed = False
        session.status = "processing"
        session.turn_limit = session.state.turn_count + self._settings.max_turns
        return await self._advance(session, single_turn)

    async def continue_session(self, session_id: str) -> ChatResponse:
        """Run one more turn, or return the stored result once completed."""
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.status == "completed" and session.last_response is not None:
            return session.last_response
        return await self._advance(session, single_turn=True)

    async def get_session(self, session_id: str) -> ChatSession:
        session = await self._store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _advance(self, session: ChatSession, single_turn: bool) -> ChatResponse:
        with agent_scope(AgentType.CHAT):
            result: ConversationResult = await self._loop.run(
                session.state,
                self._executor.get_available_tools_for_chat(),
                self._provider,
                session.provider,
                session.model,
                agent_type=AgentType.CHAT,
                context={"session_id": session.session_id},
                max_turns=session.turn_limit or self._settings.max_turns,
                single_turn=single_turn,
            )
            if result.error:
                logger.error(f"Chat turn failed session_id={session.session_id}: {result.error}")

        finished = result.completed or result.max_turns_reached or result.error is not None
        session.status = "completed" if finished else "processing"
        session.updated_at = utcnow()
        session.last_response = ChatResponse(
            session_id=session.session_id,
            response=result.final_content,
            completed=result.completed,
            turn_count=result.turn_count,
            max_turns_reached=result.max_turns_reached,
            last_tool_calls=session.state.last_tool_calls,
            error=result.error,
        )
        await self._store.save(session)
        return session.last_response
