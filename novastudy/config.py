from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".novastudy" / "data"
    sqlite_filename: str = "novastudy.db"

    # Chat endpoint used by the study report generator (Ollama-compatible)
    llm_base_url: str = "http://localhost:11434"
    llm_model: str = "llama3:8b"
    llm_timeout_seconds: float = 60.0
    report_max_tokens: int = 500
    report_max_cards: int = 5  # cards listed in the report prompt

    history_limit: int = 15
    shuffle_sessions: bool = True
    session_claim_seconds: int = 30  # how long one request may hold a session

    model_config = {"env_prefix": "NOVASTUDY_"}


settings = Settings()
