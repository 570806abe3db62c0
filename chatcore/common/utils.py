import json as json_lib
import re
from typing import Any, Dict


TITLE_MAX_LENGTH = 50


def _format_sse_chunk(chunk_data: Dict[str, Any]) -> str:
    """Formats a dictionary as a Server-Sent Event (SSE) data chunk.

    Args:
        chunk_data: The dictionary containing the data to be sent.

    Returns:
        A string formatted as an SSE data line.
    """
    json_data = json_lib.dumps(chunk_data, ensure_ascii=False)
    return f"data: {json_data}\n\n"


def generate_conversation_title(message: str) -> str:
    """Derives a short conversation title from the first user message.

    Collapses whitespace and cuts to ``TITLE_MAX_LENGTH`` characters,
    preferring a word boundary when it keeps more than 70% of the text.
    """
    cleaned = re.sub(r"\s+", " ", message.strip().replace("\n", " "))

    if len(cleaned) <= TITLE_MAX_LENGTH:
        return cleaned

    truncated = cleaned[:TITLE_MAX_LENGTH]
    last_space = truncated.rfind(" ")

    if last_space > TITLE_MAX_LENGTH * 0.7:
        return truncated[:last_space] + "..."

    return truncated + "..."
