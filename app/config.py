from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    anthropic_api_key: str
    llm_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 4096
    supabase_url: str = ""
    supabase_anon_key: str = ""
    database_path: str = "donotstay.db"
    max_reviews: int = 200
    high_score_ratio: float = 0.25
    anonymous_tier_limit: int = 5
    free_signup_credits: int = 5
    # Availability over strictness when the store errors during a rate check
    rate_limit_fail_open: bool = True
    allow_ephemeral: bool = True
    # Shared secret for the payment webhook relay; empty disables /internal routes
    internal_api_key: str = ""
    log_level: str = "INFO"
