"""
Configuration management
"""
from pydantic_settings import BaseSettings
from typing import Optional, Union, Literal

from .models.review import ModelConfig


class Settings(BaseSettings):
    """Application settings"""

    # Ollama server
    ollama_host: str = "http://localhost:11434"
    ollama_api_key: str = ""
    ollama_model: str = ""
    think_level: Union[Literal["low", "medium", "high"], bool] = "medium"

    # No timeout by default, the transport may impose one
    request_timeout: Optional[float] = None

    # Rules and request logs
    rules_dir: str = ".rules"
    logs_dir: str = ".logs"
    max_log_files: int = 10

    # Language detection only looks at the head of the file
    detect_max_chars: int = 2000

    # HTTP host
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = True

    # Benchmark
    benchmark_runs: int = 1

    class Config:
        env_file = ".env"
        case_sensitive = False

    def review_model(self) -> ModelConfig:
        """Model configuration used for interactive reviews"""
        return ModelConfig(
            name=self.ollama_model,
            model=self.ollama_model,
            think=self.think_level,
        )


# Global settings instance
settings = Settings()
