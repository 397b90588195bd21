"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_INVIDIOUS_INSTANCES = [
    "https://vid.puffyan.us",
    "https://y.com.sb",
    "https://invidious.nerdvpn.de",
    "https://invidious.tiekoetter.com",
    "https://inv.bp.projectsegfau.lt",
]

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class PlayerConfig(BaseModel):
    """A validated configuration model for the application."""

    # Storage
    download_dir: str = "~/.local/share/listui/tracks"
    database_path: str = "~/.local/share/listui/listui.sqlite"
    log_file: str = "~/.local/state/listui/listui.log"
    log_level: str = "INFO"

    # Metadata API
    invidious_instances: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INVIDIOUS_INSTANCES)
    )
    youtube_api_key: str = ""
    request_timeout: float = 30.0

    # Downloads
    max_downloads: int = 3
    downloader: str = "yt-dlp"
    decoder: str = "ffmpeg"

    # Playback
    player: str = "mpv"
    volume: int = 100
    volume_step: int = 10
    seek_seconds: int = 15
    shuffle: bool = False
    repeat: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)
    dry_run: bool = Field(False, repr=False)

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    @field_validator("max_downloads")
    @classmethod
    def validate_downloads(cls, v: int) -> int:
        """Ensures a reasonable number of concurrent downloads."""
        if v < 1 or v > 16:
            raise ValueError("max_downloads must be between 1 and 16.")
        return v

    @field_validator("volume")
    @classmethod
    def validate_volume(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("volume must be between 0 and 100.")
        return v

    @field_validator("volume_step")
    @classmethod
    def validate_volume_step(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError("volume_step must be between 1 and 50.")
        return v

    @field_validator("seek_seconds")
    @classmethod
    def validate_seek(cls, v: int) -> int:
        if not 1 <= v <= 300:
            raise ValueError("seek_seconds must be between 1 and 300.")
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive.")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}.")
        return v

    @field_validator("invidious_instances")
    @classmethod
    def validate_instances(cls, v: list[str]) -> list[str]:
        """Normalizes instance URLs and rejects anything that is not http(s)."""
        cleaned = []
        for url in v:
            url = url.strip().rstrip("/")
            if not url:
                continue
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invidious instance must be an http(s) URL: {url}")
            cleaned.append(url)
        return cleaned

    @model_validator(mode="after")
    def validate_metadata_backend(self) -> "PlayerConfig":
        """At least one way of listing remote playlists must be configured."""
        if not self.youtube_api_key and not self.invidious_instances:
            raise ValueError(
                "No metadata backend configured. Set 'youtube_api_key' or list at "
                "least one entry in 'invidious_instances'."
            )
        return self

    @property
    def download_path(self) -> Path:
        return Path(self.download_dir).expanduser()

    @property
    def database_file(self) -> Path:
        return Path(self.database_path).expanduser()

    @property
    def log_path(self) -> Path:
        return Path(self.log_file).expanduser()

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path", "dry_run"}
        return {key for key in cls.model_fields if key not in internal_fields}
