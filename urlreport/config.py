from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3000
    DB_PATH: str = "/data/urlreport.db"
    LOG_LEVEL: str = "info"

    REPORTER_EMAIL: str = ""
    REPORT_API_KEY: str = ""
    REPORT_API_BASE_URL: str = "https://report.netcraft.com/api/v3"
    HTTP_TIMEOUT: float = 30.0

    # Submission pipeline
    BATCH_SIZE: int = 1000
    MAX_URLS_PER_JOB: int = 10000
    LOOKUP_CHUNK_SIZE: int = 200
    DELAY_BETWEEN_BATCHES: float = 1.0
    WAIT_BEFORE_UUID_FETCH: float = 10.0
    UUID_FETCH_RETRIES: int = 3
    UUID_FETCH_RETRY_DELAY: float = 5.0

    # Status reconciliation
    PAGE_SIZE: int = 1000
    STATUS_CHECK_DELAY: float = 0.5
    STATUS_UPDATE_CONCURRENCY: int = 10
    STATUS_SWEEP_INTERVAL: float = 0.0

    EVENT_HISTORY_JOBS: int = 100


settings = Settings()
