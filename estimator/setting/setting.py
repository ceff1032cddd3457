import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


class ServerSettings(BaseModel):
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8080")))
    cors_origins: List[str] = Field(
        default_factory=lambda: _env_list(
            "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
        )
    )


class DatabaseSettings(BaseModel):
    url: str = Field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./estimator.db")
    )
    pool_size: int = 5
    max_overflow: int = 10


class LLMSettings(BaseModel):
    provider: str = Field(default_factory=lambda: os.getenv("LLM_PROVIDER", "gemini"))
    model: str = Field(default_factory=lambda: os.getenv("LLM_MODEL", ""))
    temperature: float = 0.2
    top_p: float = 0.8
    top_k: int = 40
    request_timeout: float = 120.0


class GeminiSettings(BaseModel):
    api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    )
    model: str = "gemini-2.0-flash-001"
    temperature: float = 0.2
    max_output_tokens: int = 8192


class OpenAISettings(BaseModel):
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    model: str = "gpt-4o-mini"
    temperature: float = 0.2


class AnthropicSettings(BaseModel):
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("ANTHROPIC_API_KEY"))
    model: str = "claude-3-5-sonnet-20241022"
    temperature: float = 0.2
    max_tokens: int = 8192


class OllamaSettings(BaseModel):
    host: str = Field(default_factory=lambda: os.getenv("OLLAMA_HOST", "localhost"))
    port: int = 11434
    model: str = "llama3.1"
    temperature: float = 0.2
    request_timeout: float = 300.0


class AuthSettings(BaseModel):
    supabase_url: Optional[str] = Field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_anon_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY")
    )
    timeout: float = 10.0


class StreamingSettings(BaseModel):
    heartbeat_seconds: float = Field(
        default_factory=lambda: float(os.getenv("STREAM_HEARTBEAT_SECONDS", "30"))
    )
    timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("STREAM_TIMEOUT_SECONDS", "600"))
    )
    max_connections_per_user: int = Field(
        default_factory=lambda: int(os.getenv("STREAM_MAX_CONNECTIONS_PER_USER", "3"))
    )


class EstimatorSettings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)


@lru_cache(maxsize=1)
def get_settings() -> EstimatorSettings:
    return EstimatorSettings()
