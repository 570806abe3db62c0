import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from chatcore.common.models import ChatMessage, GenerationConfig, Provider
from chatcore.providers.registry import AdapterRegistry

logger = logging.getLogger("ChatCore")

IndexSink = Callable[[str, str, List[float]], Awaitable[None]]


async def _discard(conversation_id: str, summary: str, embedding: List[float]) -> None:
    logger.debug(f"Indexed conversation {conversation_id} ({len(embedding)} dims); no sink configured")


class ConversationIndexer:
    """Summarizes and embeds finished conversations off the response path.

    ``schedule`` returns immediately; the work runs as a detached task and
    any failure is only logged.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        settings: dict,
        sink: Optional[IndexSink] = None,
    ):
        self.adapters = adapters
        self.settings = settings
        self.sink = sink or _discard
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.get("enabled", True)) and Provider.OPENAI in self.adapters

    def schedule(self, conversation_id: str, messages: Sequence[ChatMessage]) -> Optional[asyncio.Task]:
        if not self.enabled:
            return None
        if len(messages) < self.settings.get("min_messages", 2):
            return None
        task = asyncio.create_task(self._safe_index(conversation_id, list(messages)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _safe_index(self, conversation_id: str, messages: List[ChatMessage]) -> None:
        try:
            await self.index(conversation_id, messages)
        except Exception as e:
            # Indexing is best effort and must never reach the caller
            logger.warning(
                f"Failed to index conversation {conversation_id}: {e!r}",
                extra={"conversation_id": conversation_id},
            )

    async def index(self, conversation_id: str, messages: List[ChatMessage]) -> None:
        adapter = self.adapters.get(Provider.OPENAI)
        transcript = "\n\n".join(f"{m.role}: {m.content}" for m in messages)
        summary_config = GenerationConfig(
            provider=Provider.OPENAI,
            model=self.settings["summary_model"],
            max_tokens=self.settings.get("summary_max_tokens", 300),
            temperature=self.settings.get("summary_temperature", 0.3),
        )
        result = await adapter.generate_text(
            [
                ChatMessage(role="system", content=self.settings["summary_system_prompt"]),
                ChatMessage(role="user", content=f"Please summarize this conversation:\n\n{transcript}"),
            ],
            summary_config,
        )
        summary = result.content.strip()
        if not summary:
            logger.info(f"Skipping index for conversation {conversation_id}: empty summary")
            return
        embedding = await adapter.embed(summary, self.settings["embedding_model"])
        await self.sink(conversation_id, summary, embedding)
        logger.info(f"Indexed conversation {conversation_id}")

    async def drain(self) -> None:
        """Waits for every scheduled task; used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
