"""Common configuration settings."""

# Env var holding the credential of each provider. A provider whose
# variable is empty is left out of the catalog.
PROVIDER_CREDENTIAL_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_GENERATIVE_AI_API_KEY",
}

PROVIDER_API_BASES = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta",
}

PROVIDER_BASE_ENV = {
    "openai": "OPENAI_API_BASE",
    "anthropic": "ANTHROPIC_API_BASE",
    "google": "GOOGLE_API_BASE",
}

# Alternates appended after the requested candidate, in order
FALLBACK_CANDIDATES = [
    ("google", "gemini-1.5-flash"),
    ("anthropic", "claude-3-5-haiku-20241022"),
]

RETRY_SETTINGS = {
    "max_attempts": 3,
    "base_delay_ms": 1000,
    "jitter_ms": 1000,
}

GENERATION_SETTINGS = {
    "request_deadline_s": 120.0,
    "provider_timeout_s": 60.0,
    "default_system_prompt": (
        "You are a helpful AI assistant. When providing code examples, always "
        "format them properly using markdown code blocks with language specification.\n\n"
        "For example:\n"
        "- Use ```typescript for TypeScript code\n"
        "- Use ```javascript for JavaScript code\n"
        "- Use ```python for Python code\n"
        "- Use ```json for JSON data\n"
        "- Use ```css for CSS styles\n"
        "- Use ```html for HTML markup\n"
        "- Use ```bash for shell commands\n\n"
        "Always include the language identifier after the opening triple backticks "
        "for proper syntax highlighting.\n\n"
        "For inline code, use single backticks: `variableName` or `functionName()`.\n\n"
        "Format your responses with proper markdown structure including headers, "
        "lists, and code blocks as appropriate."
    ),
}

STREAM_SETTINGS = {
    "mode": "native",  # "native" | "synthesized"
    "chunk_delay_ms": 20,
    "chunk_jitter_ms": 20,
}

INDEXING_SETTINGS = {
    "enabled": True,
    "min_messages": 2,
    "summary_model": "gpt-4o-mini",
    "summary_max_tokens": 300,
    "summary_temperature": 0.3,
    "embedding_model": "text-embedding-3-small",
    "summary_system_prompt": (
        "You are a helpful assistant that creates concise, searchable summaries of "
        "conversations. Focus on the main topics, key points, and context that would "
        "help someone find this conversation later. Keep it under 200 words."
    ),
}

RATE_LIMIT_SETTINGS = {
    "storage_uri": "memory://",
    "generation_limit": "60/minute",
}
