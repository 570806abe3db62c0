"""Registry of the models each provider can serve.

Only providers with a configured credential end up in the runtime catalog;
this table is the superset.
"""

MODEL_REGISTRY = {
    "openai": {
        "gpt-4o": {
            "name": "GPT-4o",
            "description": "Most capable GPT-4 model",
            "cost_tier": "expensive",
        },
        "gpt-4o-mini": {
            "name": "GPT-4o Mini",
            "description": "Faster, cost-effective GPT-4",
            "cost_tier": "cheap",
        },
        "gpt-4-turbo": {
            "name": "GPT-4 Turbo",
            "description": "High-performance GPT-4",
            "cost_tier": "expensive",
        },
        "gpt-3.5-turbo": {
            "name": "GPT-3.5 Turbo",
            "description": "Fast and efficient",
            "cost_tier": "cheap",
        },
        "dall-e-3": {
            "name": "DALL-E 3",
            "description": "High-quality image generation",
            "modality": "image",
            "cost_tier": "image",
        },
        "dall-e-2": {
            "name": "DALL-E 2",
            "description": "Fast image generation",
            "modality": "image",
            "cost_tier": "image",
        },
    },
    "anthropic": {
        "claude-3-5-sonnet-20241022": {
            "name": "Claude 3.5 Sonnet",
            "description": "Most capable Claude model",
            "cost_tier": "expensive",
        },
        "claude-3-5-haiku-20241022": {
            "name": "Claude 3.5 Haiku",
            "description": "Fast and efficient Claude",
            "cost_tier": "cheap",
        },
        "claude-3-opus-20240229": {
            "name": "Claude 3 Opus",
            "description": "Previous generation flagship",
            "cost_tier": "expensive",
        },
    },
    "google": {
        "gemini-1.5-pro": {
            "name": "Gemini 1.5 Pro",
            "description": "Google's most capable model",
            "cost_tier": "expensive",
        },
        "gemini-1.5-flash": {
            "name": "Gemini 1.5 Flash",
            "description": "Fast and efficient Gemini",
            "cost_tier": "cheap",
        },
        "gemini-pro": {
            "name": "Gemini Pro",
            "description": "Previous generation Gemini",
            "cost_tier": "cheap",
        },
    },
}

# Defaults applied to absent numeric generation parameters
PROVIDER_DEFAULTS = {
    "openai": {
        "temperature": 0.7,
        "max_tokens": 1000,
        "top_p": 1,
        "presence_penalty": 0,
        "frequency_penalty": 0,
    },
    "anthropic": {
        "temperature": 0.7,
        "max_tokens": 1000,
        "top_p": 1,
    },
    "google": {
        "temperature": 0.7,
        "max_tokens": 1000,
        "top_p": 1,
        "top_k": 40,
    },
}

# Credit prices keyed by model id; unknown ids cost 1
MODEL_COSTS = {
    "gpt-4o-mini": {"cost": 1, "category": "cheap", "description": "Cost-effective model"},
    "gpt-3.5-turbo": {"cost": 1, "category": "cheap", "description": "Fast and efficient"},
    "gpt-4o": {"cost": 3, "category": "expensive", "description": "Premium model"},
    "gpt-4-turbo": {"cost": 3, "category": "expensive", "description": "High-performance model"},
    "dall-e-3": {"cost": 5, "category": "image", "description": "High-quality image generation"},
    "dall-e-2": {"cost": 5, "category": "image", "description": "Fast image generation"},
    "claude-3-5-haiku-20241022": {"cost": 1, "category": "cheap", "description": "Fast and efficient Claude"},
    "claude-3-5-sonnet-20241022": {"cost": 3, "category": "expensive", "description": "Most capable Claude model"},
    "claude-3-opus-20240229": {"cost": 3, "category": "expensive", "description": "Previous generation flagship"},
    "claude-4-sonnet-20250514": {"cost": 3, "category": "expensive", "description": "Most capable Claude model"},
    "gemini-1.5-flash": {"cost": 1, "category": "cheap", "description": "Fast and efficient Gemini"},
    "gemini-pro": {"cost": 1, "category": "cheap", "description": "Previous generation Gemini"},
    "gemini-1.5-pro": {"cost": 3, "category": "expensive", "description": "Google's most capable model"},
    "gemini-pro-vision": {"cost": 5, "category": "image", "description": "Image generation and analysis"},
}
