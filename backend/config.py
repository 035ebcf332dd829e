from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Pulse Coach"
    DATABASE_URL: str = "sqlite:///data/pulse.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:8050",
        "http://127.0.0.1:8050",
    ]

    # Behavior / pattern windows
    PULSE_BEHAVIOR_WINDOW_DAYS: int = 30
    PULSE_PATTERN_WINDOW_DAYS: int = 28
    PULSE_TREND_WINDOW_DAYS: int = 7

    # Context packet
    PULSE_CONTEXT_TOKEN_BUDGET: int = 700
    PULSE_PROMPT_TOKEN_BUDGET: int = 560
    PULSE_REMINDER_INCLUSION_THRESHOLD: float = 0.5
    PULSE_MAX_REMINDER_ACTIONS: int = 2
    PULSE_MAX_SUGGESTED_ACTIONS: int = 2

    # Policy
    PULSE_PLAN_PROPOSAL_COOLDOWN_DAYS: int = 7

    # Reminder habits
    PULSE_REMINDER_HABIT_WINDOW_DAYS: int = 30
    PULSE_REMINDER_MAX_COMPLETIONS: int = 60

    PULSE_RANKER_LIMIT: int = 6

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_pulse_configuration(self) -> None:
        errors: list[str] = []
        if not 0.0 <= self.PULSE_REMINDER_INCLUSION_THRESHOLD <= 1.0:
            errors.append("PULSE_REMINDER_INCLUSION_THRESHOLD must be within [0, 1]")
        if self.PULSE_CONTEXT_TOKEN_BUDGET < 1 or self.PULSE_PROMPT_TOKEN_BUDGET < 1:
            errors.append("token budgets must be positive")
        if self.PULSE_PLAN_PROPOSAL_COOLDOWN_DAYS < 0:
            errors.append("PULSE_PLAN_PROPOSAL_COOLDOWN_DAYS cannot be negative")
        if self.PULSE_REMINDER_MAX_COMPLETIONS < 1:
            errors.append("PULSE_REMINDER_MAX_COMPLETIONS must be at least 1")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid pulse configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
