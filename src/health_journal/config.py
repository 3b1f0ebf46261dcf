# config.py
# Environment-driven settings. Read once at startup; nothing else calls getenv.

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_MODELS = [
    "qwen/qwen3-30b-a3b:free",
    "microsoft/phi-3-mini-128k-instruct:free",
    "meta-llama/llama-3.1-8b-instruct:free",
    "google/gemma-2-9b-it:free",
    "mistralai/mistral-7b-instruct:free",
]


def _model_list(prefix: str, defaults: list[str]) -> list[str]:
    """Read PREFIX_1..PREFIX_5, keeping position-wise defaults for unset slots."""
    models: list[str] = []
    for i in range(5):
        fallback = defaults[i] if i < len(defaults) else ""
        value = os.getenv(f"{prefix}_{i + 1}", fallback)
        if value and value != "undefined":
            models.append(value)
    return models


class Settings(BaseModel):
    """All runtime configuration for a health-journal process."""

    openrouter_api_key: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    json_models: list[str] = Field(default_factory=list)
    model_retry_delay: float = 2.0

    structured_assessment: bool = False

    max_retries: int = Field(default=3, ge=1)
    action_delay: float = Field(default=1.0, ge=0.0)

    google_api_key: str | None = None
    google_cse_id: str | None = None

    jina_api_key: str | None = None
    jina_api_url: str = "https://api.jina.ai/v1/embeddings"
    supabase_url: str | None = None
    supabase_key: str | None = None

    fitbit_client_id: str | None = None
    fitbit_client_secret: str | None = None
    fitbit_token_file: str = ".fitbit_tokens.json"

    outputs_dir: str = "ai_outputs"
    prompt_overrides: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        overrides = {
            name: os.environ[var]
            for name, var in (
                ("breakdown", "AI_BREAKDOWN_SYSTEM_PROMPT"),
                ("json_executor", "AI_JSON_EXECUTOR_SYSTEM_PROMPT"),
                ("progress_analyzer", "AI_PROGRESS_ANALYZER_SYSTEM_PROMPT"),
                ("synthesis", "AI_SYNTHESIS_SYSTEM_PROMPT"),
                ("final_response", "AI_FINAL_RESPONSE_SYSTEM_PROMPT"),
            )
            if os.getenv(var)
        }
        return cls(
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY"),
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
            models=_model_list("OPENROUTER_MODEL", DEFAULT_MODELS),
            json_models=_model_list("OPENROUTER_JSON_MODEL", []),
            model_retry_delay=float(os.getenv("MODEL_RETRY_DELAY_SECONDS", "2")),
            structured_assessment=os.getenv("STRUCTURED_ASSESSMENT", "").lower() in ("1", "true", "yes"),
            max_retries=int(os.getenv("JSON_ACTION_MAX_RETRIES", "3")),
            action_delay=float(os.getenv("ACTION_DELAY_SECONDS", "1")),
            google_api_key=os.getenv("GOOGLE_API_KEY"),
            google_cse_id=os.getenv("GOOGLE_CSE_ID"),
            jina_api_key=os.getenv("JINA_API_KEY"),
            jina_api_url=os.getenv("JINA_API_URL", "https://api.jina.ai/v1/embeddings"),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            fitbit_client_id=os.getenv("FITBIT_CLIENT_ID"),
            fitbit_client_secret=os.getenv("FITBIT_CLIENT_SECRET"),
            fitbit_token_file=os.getenv("FITBIT_TOKEN_FILE", ".fitbit_tokens.json"),
            outputs_dir=os.getenv("OUTPUTS_DIR", "ai_outputs"),
            prompt_overrides=overrides,
        )
