"""Library configuration."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Settings loaded from WEBJOSE_* environment variables."""

    # Remote key sets and certificate chains
    remote_cache_ttl_seconds: int = Field(default=900, ge=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    http_user_agent: str = "webjose/0.1.0"

    # PBES2 key encryption
    pbes2_iterations: int = Field(default=4096, ge=1)
    pbes2_max_iterations: int = Field(default=1_000_000, ge=1)

    # Content compression (zip: DEF)
    deflate_level: int = Field(default=9, ge=0, le=9)

    @model_validator(mode="after")
    def check_iterations(self) -> "Settings":
        if self.pbes2_iterations > self.pbes2_max_iterations:
            raise ValueError("pbes2_iterations exceeds pbes2_max_iterations")
        return self

    class Config:
        env_file = ".env"
        env_prefix = "WEBJOSE_"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
