from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Search provider
    search_provider: str = "google"  # google | tavily
    google_api_keys: str = ""  # comma-separated, tried in order
    google_cx_ids: str = ""
    tavily_api_key: str = ""
    search_max_results: int = 10
    search_image_results: int = 8
    provider_timeout_seconds: float = 10.0

    # Research synthesis
    research_api_url: str = ""  # empty -> fan-out over the web search backend
    research_max_sources: int = 20
    research_diversity: bool = True
    research_max_angles: int = 5
    research_max_parallel_requests: int = 5
    research_timeout_seconds: float = 30.0

    # Job runner (Inngest)
    inngest_event_url: str = "https://inn.gs"
    inngest_event_key: str = ""
    inngest_api_url: str = "https://api.inngest.com"
    inngest_signing_key: str = ""
    generation_event_name: str = "llm-model"
    job_runner_timeout_seconds: float = 10.0

    # File analysis
    file_analysis_url: str = "http://localhost:3000/api/analyze"
    file_analysis_timeout_seconds: float = 120.0

    # Durable store
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Conversation file context
    file_context_dir: str = ".cache/conversation_files"

    # Completion poller
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 60
    poll_timeout_seconds: float = 300.0
    poll_format_error_limit: int = 2

    # Conversation mirror
    mirror_max_conversations: int = 256

    # Models
    default_model: str = "provider-8/gemini-2.0-flash"

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def google_api_key_list(self) -> list[str]:
        return [k.strip() for k in self.google_api_keys.split(",") if k.strip()]

    @property
    def google_cx_id_list(self) -> list[str]:
        return [c.strip() for c in self.google_cx_ids.split(",") if c.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
