from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Relay Bot"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "relaybot.db"

    # Assistant provider
    llm_provider: str = "openai"  # openai
    openai_api_key: str = ""
    default_assistant_name: str = "default"

    # Run executor
    run_mode: str = "stream"  # stream | poll
    poll_max_attempts: int = 60
    poll_initial_delay: float = 1.0
    poll_backoff_factor: float = 1.5
    poll_max_delay: float = 2.0
    status_fetch_retries: int = 3
    status_fetch_retry_delay: float = 1.0
    stream_timeout: float = 120.0

    # What to do when saving an exchange fails after the reply was produced
    persistence_policy: str = "log"  # log | raise

    # Discord
    discord_token: str = ""
    discord_command_prefix: str = "!c"
    discord_reset_command: str = "!delete"
    chunk_char_limit: int = 2000
    chunk_file_threshold: int = 1000

    # Crawling
    crawl_user_id: str = "api"
    crawl_username: str = "api"
    crawl_tick_seconds: int = 60
    scheduler_enabled: bool = True
    scrape_timeout_ms: int = 30000
    scrape_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/87.0.4280.88 Safari/537.36"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "RELAYBOT_",
    }


settings = Settings()
