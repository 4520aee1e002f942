"""Load settings.yaml into typed dataclasses. Reports which models have API keys."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass(frozen=True)
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    readable_name: str
    token_limit: int                   # total context window, prompt + response
    default_prompt_token_ratio: float  # share of the window the prompt may use
    prompt_cost_per_mille: float       # USD per 1000 prompt tokens
    response_cost_per_mille: float     # USD per 1000 response tokens
    base_url: str | None = None


@dataclass
class PromptsConfig:
    opening: str
    thoughts_system: str
    thoughts_request: str
    response_system: str
    response_request: str
    moderator_comments: list[str] = field(default_factory=list)


@dataclass
class DefaultsConfig:
    rounds: int
    temperature: float
    moderation_interval: int
    model: str
    output_file: Path | None
    personas_dir: Path
    allow_speaking_twice: bool = False


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    available_models: set[str] = field(default_factory=set)


def _resolve(path_str: str, base: Path) -> Path:
    path = Path(path_str)
    return path if path.is_absolute() else base / path


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check available_models.
    Relative personas_dir is resolved against the settings file's directory.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    output_file = defaults_raw.get("output_file")
    defaults = DefaultsConfig(
        rounds=int(defaults_raw["rounds"]),
        temperature=float(defaults_raw["temperature"]),
        moderation_interval=int(defaults_raw["moderation_interval"]),
        model=str(defaults_raw["model"]),
        output_file=Path(output_file) if output_file else None,
        personas_dir=_resolve(defaults_raw["personas_dir"], settings_path.parent),
        allow_speaking_twice=bool(defaults_raw.get("allow_speaking_twice", False)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        opening=prompts_raw["opening"],
        thoughts_system=prompts_raw["thoughts_system"],
        thoughts_request=prompts_raw["thoughts_request"],
        response_system=prompts_raw["response_system"],
        response_request=prompts_raw["response_request"],
        moderator_comments=[str(c) for c in raw.get("moderator_comments", [])],
    )

    models: dict[str, ModelConfig] = {}
    available_models: set[str] = set()

    for model_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=model_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            readable_name=model_raw.get("readable_name", model_name),
            token_limit=int(model_raw["token_limit"]),
            default_prompt_token_ratio=float(model_raw["default_prompt_token_ratio"]),
            prompt_cost_per_mille=float(model_raw["cost_per_mille"]["prompt"]),
            response_cost_per_mille=float(model_raw["cost_per_mille"]["response"]),
            base_url=model_raw.get("base_url"),
        )
        models[model_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_models.add(model_name)
            logger.info("Model available: %s", model_name)
        else:
            logger.info(
                "Model skipped (no API key): %s; set %s in .env",
                model_name,
                model_raw["api_key_env"],
            )

    if defaults.model not in models:
        raise ValueError(f"Default model '{defaults.model}' is not defined under models")

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        available_models=available_models,
    )
