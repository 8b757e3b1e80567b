"""LLM and editor configuration, read from the environment."""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ModelProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OLLAMA = "ollama"

    @classmethod
    def from_env(cls) -> "ModelProvider":
        """Detect provider from environment."""
        explicit = os.getenv("LLM_PROVIDER", "").lower()
        if explicit == "ollama":
            return cls.OLLAMA
        if explicit == "openai":
            return cls.OPENAI
        if os.getenv("OPENAI_API_KEY"):
            return cls.OPENAI
        return cls.OLLAMA


# Default models per provider
DEFAULT_MODELS = {
    ModelProvider.OPENAI: "gpt-4.1-2025-04-14",
    ModelProvider.OLLAMA: "gpt-oss:20b",
}


@dataclass
class ModelConfig:
    """Configuration for a model."""
    provider: ModelProvider
    model: str

    @property
    def full_name(self) -> str:
        """Get the full model string for pydantic-ai."""
        return f"{self.provider.value}:{self.model}"

    def __str__(self) -> str:
        return f"{self.provider.value}/{self.model}"


def get_model_config(provider: Optional[ModelProvider] = None) -> ModelConfig:
    """Get the model configuration."""
    if provider is None:
        provider = ModelProvider.from_env()

    env_var = "OPENAI_MODEL" if provider == ModelProvider.OPENAI else "OLLAMA_MODEL"
    model = os.getenv(env_var, DEFAULT_MODELS[provider])
    return ModelConfig(provider=provider, model=model)


def get_ollama_base_url() -> str:
    """Get Ollama base URL, always ending in /v1."""
    base = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    if not base.endswith("/v1"):
        base = base.rstrip("/") + "/v1"
    return base


def get_model_name(provider: Optional[ModelProvider] = None) -> str:
    """Get the model string for pydantic-ai.

    For Ollama, pydantic-ai reads OLLAMA_BASE_URL and needs the /v1 suffix,
    so the variable is normalised before the model string is returned.
    """
    config = get_model_config(provider)

    if config.provider == ModelProvider.OLLAMA:
        os.environ["OLLAMA_BASE_URL"] = get_ollama_base_url()

    return config.full_name


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class EditorSettings:
    """Editing session settings."""
    save_debounce: float = 1.0
    save_attempts: int = 3
    save_backoff: float = 0.5
    generation_timeout: float = 120.0
    snap_grid: float = 15.0
    storage_dir: str = "./diagrams"
    user_id: str = "local"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EditorSettings":
        settings = cls(
            save_debounce=_env_float("DIAGRAM_SAVE_DEBOUNCE", cls.save_debounce),
            save_attempts=_env_int("DIAGRAM_SAVE_ATTEMPTS", cls.save_attempts),
            save_backoff=_env_float("DIAGRAM_SAVE_BACKOFF", cls.save_backoff),
            generation_timeout=_env_float("DIAGRAM_GENERATION_TIMEOUT", cls.generation_timeout),
            snap_grid=_env_float("DIAGRAM_SNAP_GRID", cls.snap_grid),
            storage_dir=os.getenv("DIAGRAM_STORAGE_DIR", cls.storage_dir),
            user_id=os.getenv("DIAGRAM_USER_ID", cls.user_id),
            log_level=os.getenv("DIAGRAM_LOG_LEVEL", cls.log_level).upper(),
        )
        if settings.save_debounce < 0:
            raise ValueError("DIAGRAM_SAVE_DEBOUNCE must not be negative")
        if settings.save_attempts < 1:
            raise ValueError("DIAGRAM_SAVE_ATTEMPTS must be at least 1")
        if settings.generation_timeout <= 0:
            raise ValueError("DIAGRAM_GENERATION_TIMEOUT must be positive")
        return settings


def get_current_config() -> dict:
    """Get current configuration as a dictionary."""
    provider = ModelProvider.from_env()
    model_config = get_model_config(provider)
    settings = EditorSettings.from_env()

    config = {
        "provider": provider.value,
        "model": model_config.model,
        "model_full": model_config.full_name,
        "storage_dir": settings.storage_dir,
        "user_id": settings.user_id,
        "save_debounce": settings.save_debounce,
        "snap_grid": settings.snap_grid,
    }

    if provider == ModelProvider.OPENAI:
        config["api_key_set"] = bool(os.getenv("OPENAI_API_KEY"))
    else:
        config["ollama_url"] = get_ollama_base_url()

    return config


def print_config():
    """Print current configuration."""
    config = get_current_config()
    print(f"Provider: {config['provider']}")
    print(f"Model: {config['model_full']}")
    if config["provider"] == "openai":
        print(f"API Key: {'Set' if config.get('api_key_set') else 'NOT SET'}")
    else:
        print(f"Ollama URL: {config.get('ollama_url')}")
    print(f"Storage: {config['storage_dir']} (user {config['user_id']})")
    print(f"Autosave delay: {config['save_debounce']}s, grid: {config['snap_grid']}")
