import logging
import copy
from typing import Any, Dict, List, Sequence, Tuple

from chatcore.common.models import ChatMessage

logger = logging.getLogger("ChatCore")


class MessageNormalizer:
    """
    Utilities for normalizing chat message history for different providers.
    """

    @staticmethod
    def _to_content_list(content):
        """Converts string content to a list of content parts."""
        if isinstance(content, str):
            return [{"type": "text", "text": content}]
        if isinstance(content, list):
            return content
        return []

    @staticmethod
    def _merge_contents(content_a, content_b):
        """
        Merges two content objects (str or list) into one.
        Returns a list if any input is a list (multimodal), otherwise a string.
        """
        if isinstance(content_a, str) and isinstance(content_b, str):
            return f"{content_a}\n{content_b}"

        list_a = MessageNormalizer._to_content_list(content_a)
        list_b = MessageNormalizer._to_content_list(content_b)

        # Adjacent text parts collapse into one
        if (list_a and list_b and
            list_a[-1].get("type") == "text" and
            list_b[0].get("type") == "text"):

            merged_text = f"{list_a[-1]['text']}\n{list_b[0]['text']}"
            return list_a[:-1] + [{"type": "text", "text": merged_text}] + list_b[1:]

        return list_a + list_b

    @staticmethod
    def _is_empty(content) -> bool:
        if content is None:
            return True
        if isinstance(content, str):
            return not content.strip()
        return not content

    @staticmethod
    def _merge_consecutive(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        merged: List[Dict[str, Any]] = []
        for msg in messages:
            if MessageNormalizer._is_empty(msg.get("content")):
                continue
            msg = copy.deepcopy(msg)
            if merged and merged[-1].get("role") == msg.get("role"):
                merged[-1]["content"] = MessageNormalizer._merge_contents(
                    merged[-1]["content"], msg["content"]
                )
            else:
                merged.append(msg)
        return merged

    @staticmethod
    def render_openai(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        """Converts messages to OpenAI chat format, image attachments as image_url parts."""
        rendered = []
        for msg in messages:
            attachments = msg.attachments or []
            if not attachments:
                rendered.append({"role": msg.role, "content": msg.content})
                continue
            parts: List[Dict[str, Any]] = []
            if msg.content:
                parts.append({"type": "text", "text": msg.content})
            for att in attachments:
                if att.file_type == "image" and msg.role == "user":
                    parts.append({"type": "image_url", "image_url": {"url": att.url}})
                else:
                    parts.append({"type": "text", "text": _attachment_reference(att)})
            rendered.append({"role": msg.role, "content": parts})
        return rendered

    @staticmethod
    def render_anthropic(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        rendered = []
        for msg in messages:
            attachments = msg.attachments or []
            if not attachments or msg.role == "system":
                rendered.append({"role": msg.role, "content": msg.content})
                continue
            parts: List[Dict[str, Any]] = []
            for att in attachments:
                if att.file_type == "image" and msg.role == "user":
                    parts.append({"type": "image", "source": {"type": "url", "url": att.url}})
                else:
                    parts.append({"type": "text", "text": _attachment_reference(att)})
            if msg.content:
                parts.append({"type": "text", "text": msg.content})
            rendered.append({"role": msg.role, "content": parts})
        return rendered

    @staticmethod
    def render_plain(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
        """Text-only rendering; attachments become reference lines."""
        rendered = []
        for msg in messages:
            lines = [msg.content] if msg.content else []
            lines.extend(_attachment_reference(att) for att in msg.attachments or [])
            rendered.append({"role": msg.role, "content": "\n".join(lines)})
        return rendered

    @staticmethod
    def normalize_for_openai(messages: list) -> list:
        """
        Normalizes messages for OpenAI.

        Rules:
        1. Remove empty/None messages.
        2. Merge consecutive messages from the same role.
        """
        return MessageNormalizer._merge_consecutive(messages)

    @staticmethod
    def normalize_for_anthropic(messages: list) -> Tuple[str, list]:
        """
        Normalizes messages for the Anthropic Messages API.

        Returns the joined system prompt (Anthropic takes it as a separate
        field) and the remaining history, merged per role and starting with
        a user turn.
        """
        return MessageNormalizer._split_system(messages)

    @staticmethod
    def normalize_for_gemini(messages: list) -> Tuple[str, list]:
        """
        Normalizes messages for Google Gemini (strict alternation).

        Rules:
        1. Remove empty/None messages.
        2. Lift system messages out; Gemini takes them as systemInstruction.
        3. Merge consecutive messages from the same role.
        4. If history starts with Assistant, inject a dummy User message.
        """
        return MessageNormalizer._split_system(messages)

    @staticmethod
    def _split_system(messages: list) -> Tuple[str, list]:
        system_parts = [
            m["content"] for m in messages
            if m.get("role") == "system" and isinstance(m.get("content"), str) and m["content"].strip()
        ]
        history = MessageNormalizer._merge_consecutive(
            [m for m in messages if m.get("role") != "system"]
        )
        if history and history[0].get("role") == "assistant":
            logger.info("Normalization: Detected conversation starting with Assistant. Injecting dummy User message.")
            history.insert(0, {"role": "user", "content": "..."})
        return "\n\n".join(system_parts), history


def _attachment_reference(att) -> str:
    return f"[Attachment: {att.file_name} ({att.mime_type}) {att.url}]"
