from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    gemini_api_key: str = ""
    llm_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    request_timeout: float = 60.0  # seconds

    question_count: int = 5
    max_question_count: int = 100
    prompt_max_chars: int = 4000

    max_upload_size: int = 20 * 1024 * 1024
    upload_dir: Optional[str] = None  # system temp dir when unset

    admin_api_key: str = ""
    app_title: str = "QuizHub Quiz Generator"

    class Config:
        env_file = ".env"


settings = Settings()
