"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
            flattened['ws_rate_limit'] = data['server'].get('ws_rate_limit')
            flattened['ws_rate_window_seconds'] = data['server'].get('ws_rate_window_seconds')
        if 'openai' in data:
            openai_cfg = data['openai']
            flattened['evaluation_model'] = openai_cfg.get('evaluation_model')
            flattened['evaluation_temperature'] = openai_cfg.get('temperature')
            flattened['evaluation_timeout_seconds'] = openai_cfg.get('timeout_seconds')
        if 'coach' in data:
            flattened['persona_name'] = data['coach'].get('persona')
        if 'storage' in data:
            flattened['state_filename'] = data['storage'].get('state_filename')

        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OpenAI (a missing key makes every analysis fall back)
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    evaluation_model: str = Field(default="gpt-4o-mini")
    evaluation_temperature: float = Field(default=0.3)
    evaluation_timeout_seconds: float = Field(default=20.0)

    # Coach
    persona_name: str = Field(default="default")

    # Authentication (optional: None disables auth)
    app_secret: str | None = Field(default=None)

    # Server
    env: str = Field(default="development", description="ENV=production switches to JSON logs")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    allowed_origins: str = Field(default="http://localhost:8000,http://127.0.0.1:8000")
    ws_rate_limit: int = Field(default=10, description="WebSocket connections per IP per window")
    ws_rate_window_seconds: float = Field(default=60.0)

    # Storage
    state_filename: str = Field(default="lumina_state.json")

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def state_dir(self) -> Path:
        d = self.project_root / "data" / "state"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @property
    def state_path(self) -> Path:
        """Location of the persisted session snapshot."""
        return self.state_dir / self.state_filename

    @property
    def frontend_dir(self) -> Path:
        return self.project_root / "frontend"

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def load_persona(persona_name: str = "default") -> dict:
    """Load coach persona configuration from YAML file."""
    persona_path = _find_project_root() / "config" / "personas" / f"{persona_name}.yaml"
    if not persona_path.exists():
        raise FileNotFoundError(f"Persona file not found: {persona_path}")
    with open(persona_path, encoding='utf-8') as f:
        data = yaml.safe_load(f)
    return data.get('persona', {})
