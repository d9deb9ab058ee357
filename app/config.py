from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ── Application ────────────────────────────────────────────────────────────
    app_name: str = "Dormitricity API"
    app_version: str = "0.1.0"
    debug: bool = False

    # ── Authentication ─────────────────────────────────────────────────────────
    # Operator endpoints (status, job inspection, manual trigger)
    api_key: str = "dev-api-key"

    # ── Database ───────────────────────────────────────────────────────────────
    database_url: str = "postgresql+asyncpg://dormitricity:dormitricity@db:5432/dormitricity"

    # ── Redis / Celery ─────────────────────────────────────────────────────────
    redis_url: str = "redis://redis:6379/0"

    # ── Crawler claim credential ───────────────────────────────────────────────
    claim_token_secret: str = "dev-claim-secret-change-me-32-bytes"
    claim_token_issuer: str = "dormitricity-orchestrator"
    claim_token_audience: str = "crawler"
    claim_token_ttl_sec: int = 10 * 60
    claim_token_leeway_sec: int = 30

    # ── Targets ────────────────────────────────────────────────────────────────
    # HMAC key that turns a canonical dorm id into its pseudonymous hashed_dir
    dorm_hash_key: str = "dev-dorm-hash-key"

    # ── Scheduling ─────────────────────────────────────────────────────────────
    schedule_interval_sec: int = 10 * 60
    slice_size: int = 50
    # Advisory deadline handed to the claimant; also the lease length when reclaim is on
    claim_deadline_sec: int = 8 * 60
    slice_lease_reclaim_enabled: bool = True

    # ── Ingestion ──────────────────────────────────────────────────────────────
    # Reject dorm_latest updates older than the stored reading
    latest_state_monotonic: bool = True

    # ── Subscriptions ──────────────────────────────────────────────────────────
    max_subscriptions_per_user: int = 5
    allowed_cooldowns_sec: list[int] = [43200, 64800, 86400, 172800]
    default_cooldown_sec: int = 43200

    # ── Discharge-rate estimator ───────────────────────────────────────────────
    estimator_window_sec: int = 24 * 3600
    estimator_min_points: int = 5
    estimator_min_r2: float = 0.5
    estimator_refresh_interval_sec: int = 30 * 60

    # ── External job runner (GitHub Actions workflow_dispatch) ─────────────────
    github_token: str | None = None  # None → runner not configured
    github_owner: str = ""
    github_repo: str = ""
    github_workflow: str = "crawler.yml"
    github_ref: str = "main"

    # ── Notifications ──────────────────────────────────────────────────────────
    notify_timeout_sec: float = 10.0

    @field_validator("slice_size", "claim_deadline_sec", "claim_token_ttl_sec")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive number of items/seconds")
        return v

    @field_validator("estimator_min_r2")
    @classmethod
    def validate_min_r2(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("estimator_min_r2 must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_cooldowns(self) -> "Settings":
        if not self.allowed_cooldowns_sec:
            raise ValueError("allowed_cooldowns_sec must not be empty")
        if self.default_cooldown_sec not in self.allowed_cooldowns_sec:
            raise ValueError("default_cooldown_sec must be one of allowed_cooldowns_sec")
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
