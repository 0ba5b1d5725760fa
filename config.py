import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class AppSettings:
    """Global app settings."""

    data_file: str = os.getenv("DATA_FILE", "data/tuition.json")
    database_url: str = os.getenv("DATABASE_URL", "")
    database_name: str = os.getenv("DATABASE_NAME", "tuition")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", 8000))

    @property
    def data_path(self) -> Path:
        """Returns absolute path to the JSON document file."""
        path = Path(self.data_file)
        if not path.is_absolute():
            # relative paths resolve against the project root
            path = Path(__file__).resolve().parent / path
        return path

    @property
    def uses_mongo(self) -> bool:
        return self.database_url.startswith(("mongodb://", "mongodb+srv://"))
