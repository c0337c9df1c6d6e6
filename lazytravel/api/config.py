# api/config.py
"""Configuration management for the trip planner."""
import os
from dotenv import load_dotenv

load_dotenv()

OPTIMIZER_STRATEGIES = ("heuristic", "oracle", "cluster")
TRAVEL_ESTIMATORS = ("llm", "maps")


def get_openai_api_key():
    """Get OpenAI API key from environment."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY not set")
    return api_key


def get_chat_model():
    """Chat model used by every oracle call."""
    return os.getenv("OPENAI_CHAT_MODEL", "gpt-4.1")


def get_google_maps_config():
    """Get Google Maps configuration."""
    return {
        "api_key": os.getenv("GOOGLE_MAPS_API_KEY", ""),
    }


def get_optimizer_config():
    """Get route optimizer configuration."""
    return {
        "strategy": os.getenv("OPTIMIZER_STRATEGY", "heuristic").lower(),
        "heuristic_capacity": int(os.getenv("HEURISTIC_DAY_CAPACITY", "8")),
        "cluster_capacity": int(os.getenv("CLUSTER_DAY_CAPACITY", "10")),
        "oracle_timeout_seconds": float(os.getenv("ORACLE_TIMEOUT_SECONDS", "60")),
        "oracle_max_attempts": int(os.getenv("ORACLE_MAX_ATTEMPTS", "3")),
    }


def get_autosave_config():
    """Get debounced auto-save configuration."""
    return {
        "debounce_seconds": float(os.getenv("AUTOSAVE_DEBOUNCE_SECONDS", "1.5")),
    }


def get_travel_estimate_config():
    """Get travel-time estimator configuration."""
    return {
        "estimator": os.getenv("TRAVEL_ESTIMATOR", "llm").lower(),
        "mode": os.getenv("TRAVEL_MODE", "walking").lower(),
    }


def get_port():
    """Get port configuration."""
    return int(os.getenv("PORT", 5000))


def validate_config():
    """Validate the configured strategy names.

    Raises:
        ValueError: If a strategy or estimator name is unknown
    """
    optimizer = get_optimizer_config()
    if optimizer["strategy"] not in OPTIMIZER_STRATEGIES:
        raise ValueError(
            f"Invalid OPTIMIZER_STRATEGY. Must be one of: {', '.join(OPTIMIZER_STRATEGIES)}"
        )
    if optimizer["heuristic_capacity"] < 1 or optimizer["cluster_capacity"] < 1:
        raise ValueError("Day capacities must be positive")

    estimator = get_travel_estimate_config()["estimator"]
    if estimator not in TRAVEL_ESTIMATORS:
        raise ValueError(
            f"Invalid TRAVEL_ESTIMATOR. Must be one of: {', '.join(TRAVEL_ESTIMATORS)}"
        )
    return True
