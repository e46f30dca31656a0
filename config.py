import os
from functools import lru_cache
from pathlib import Path

MAX_PAGE_SIZE = 100


class Settings:
    def __init__(
        self,
        database_url: str,
        log_level: str,
        default_page_size: int,
    ) -> None:
        self.database_url = database_url
        self.log_level = log_level
        self.default_page_size = default_page_size


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    default_page_size = int(os.getenv("LEDGER_DEFAULT_PAGE_SIZE", "20"))
    if not 1 <= default_page_size <= MAX_PAGE_SIZE:
        raise ValueError(
            f"LEDGER_DEFAULT_PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}, "
            f"got {default_page_size}"
        )
    return Settings(
        database_url=database_url,
        log_level=log_level,
        default_page_size=default_page_size,
    )
