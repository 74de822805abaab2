# proxy/config.py
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM upstream — every non-/health request is forwarded here
    llm_server_url: str = "http://localhost:8000"  # LLM_SERVER_URL

    # Listener
    host: str = "0.0.0.0"   # HOST
    port: int = 3000        # PORT

    log_level: str = "INFO"  # LOG_LEVEL

    model_config = {"env_file": ".env", "case_sensitive": False}


settings = Settings()
