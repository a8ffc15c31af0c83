"""
Configuration management with Pydantic validation and environment variable support.
"""

import json
import os
import platform
from pathlib import Path
from typing import List, Literal, Optional, Tuple, Type
from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from ..ai_backends.openrouter import OPENROUTER_API_URL
from ..diff.budget import MAX_DIFF_CHARS, MIN_DIFF_CHARS
from ..utils.prompts import CommitFormat


API_KEY_ENV = "OPENROUTER_API_KEY"
MODEL_ENV = "COMMITTER_MODEL"


class AISettings(BaseModel):
    """Completion endpoint configuration."""

    model: str = Field(
        default="google/gemini-2.0-flash-001",
        description="OpenRouter model identifier"
    )
    api_url: str = Field(
        default=OPENROUTER_API_URL,
        description="Chat completions endpoint"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="OpenRouter API key (OPENROUTER_API_KEY takes precedence)"
    )
    timeout: int = Field(
        default=120,
        ge=10,
        le=600,
        description="API request timeout in seconds"
    )


class CommitSettings(BaseModel):
    """Commit message generation configuration."""

    format: CommitFormat = Field(
        default=CommitFormat.CONVENTIONAL,
        description="Commit message style"
    )
    custom_template: Optional[str] = Field(
        default=None,
        description="Prompt rules used by the custom format"
    )
    extra_instructions: Optional[str] = Field(
        default=None,
        description="Additional requirements appended to the prompt"
    )
    auto_commit: bool = Field(
        default=False,
        description="Commit without asking for confirmation"
    )
    commit_after_branch: bool = Field(
        default=False,
        description="Commit straight away after switching to a suggested branch"
    )


class DiffSettings(BaseModel):
    """Diff preparation configuration."""

    max_chars: int = Field(
        default=MAX_DIFF_CHARS,
        ge=MIN_DIFF_CHARS,
        description="Maximum characters of diff sent to the model"
    )
    extra_excludes: List[str] = Field(
        default_factory=list,
        description="Additional file names, suffixes or directories to leave out"
    )

    @field_validator('extra_excludes', mode='before')
    @classmethod
    def split_comma_list(cls, v):
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class UISettings(BaseModel):
    """User interface configuration."""

    use_colors: bool = Field(
        default=True,
        description="Use colored output"
    )
    verbose: bool = Field(
        default=False,
        description="Show diff statistics and excluded files"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging level"
    )


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    ai: AISettings = Field(default_factory=AISettings)
    commit: CommitSettings = Field(default_factory=CommitSettings)
    diff: DiffSettings = Field(default_factory=DiffSettings)
    ui: UISettings = Field(default_factory=UISettings)

    model_config = {
        "env_prefix": "COMMITTER_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "extra": "ignore",
    }

    def __init__(self, **kwargs):
        # Load the default config file unless values were passed explicitly
        if not kwargs:
            config_path = self._get_default_config_path()
            if config_path.exists():
                try:
                    with open(config_path) as f:
                        kwargs = json.load(f)
                except (json.JSONDecodeError, OSError) as e:
                    logger.warning(f"Ignoring unreadable config file {config_path}: {e}")

        if os.getenv(MODEL_ENV):
            kwargs = dict(kwargs)
            kwargs["ai"] = {**kwargs.get("ai", {}), "model": os.getenv(MODEL_ENV)}

        super().__init__(**kwargs)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override the config file
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @staticmethod
    def _get_default_config_path() -> Path:
        """Get the default config file path."""
        if platform.system() == "Windows":
            base = Path(os.environ.get("APPDATA", "~"))
        else:
            base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))

        return (base / "committer" / "config.json").expanduser()

    @classmethod
    def from_file(cls, config_path: Path) -> "Settings":
        """Load settings from a configuration file."""
        if config_path.exists():
            with open(config_path) as f:
                config_data = json.load(f)
            return cls(**config_data)
        return cls()

    def save_to_file(self, config_path: Optional[Path] = None) -> Path:
        """Save current settings to a configuration file."""
        config_path = config_path or self.config_path
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
        return config_path

    def get_api_key(self) -> Optional[str]:
        """API key from OPENROUTER_API_KEY, falling back to the config file."""
        return os.getenv(API_KEY_ENV) or self.ai.api_key or None

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory."""
        return self._get_default_config_path().parent

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def cache_dir(self) -> Path:
        """Get the cache directory."""
        if platform.system() == "Windows":
            base = Path(os.environ.get("LOCALAPPDATA", "~"))
        else:
            base = Path(os.environ.get("XDG_CACHE_HOME", "~/.cache"))

        return (base / "committer").expanduser()

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.cache_dir / "committer.log"
