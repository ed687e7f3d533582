"""Global configuration, loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    state_dir: Path = Path.home() / ".procvisor"
    log_level: str = "INFO"

    # Timing contracts. Both are heuristics, not synchronization.
    sample_interval: float = 0.2  # seconds between the two CPU snapshots
    probe_delay: float = 0.1  # wait before looking for the real worker pid

    max_chain_depth: int = 1024

    model_config = {"env_prefix": "PROCVISOR_"}

    @property
    def daemon_log(self) -> Path:
        return self.state_dir / "daemon.log"

    @property
    def pid_file(self) -> Path:
        return self.state_dir / "daemon.pid"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""
    return Settings()
