"""Process-level settings with pydantic-settings.

These are settings of the tool itself, not of a project (the project
manifest lives in ``binslicer.project.config``).

Precedence (highest to lowest):
1. Direct kwargs to load_settings()
2. Environment variables (BINSLICER__SECTION__KEY)
3. Global YAML (~/.config/binary-slicer/config.yaml)
4. Built-in defaults (this file)

Examples:
    BINSLICER__LOGGING__LEVEL=DEBUG
    BINSLICER__LOGGING__FORMAT=json
    BINSLICER__BACKENDS__RIZIN_PATH=/opt/rizin/bin/rizin
"""

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from binslicer.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/binary-slicer/config.yaml").expanduser()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseModel):
    """Logging configuration.

    Env vars:
        BINSLICER__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        BINSLICER__LOGGING__FORMAT: console or json
        BINSLICER__LOGGING__DESTINATION: stderr, stdout or absolute file path
    """

    level: LogLevel = Field(
        default="WARNING",
        description="Root log level. Command output goes through the console, not logs.",
    )
    format: Literal["json", "console"] = "console"
    destination: str = "stderr"

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class BackendSettings(BaseModel):
    """Tool locations used when a project does not record one.

    Env vars:
        BINSLICER__BACKENDS__RIZIN_PATH: rizin executable
        BINSLICER__BACKENDS__GHIDRA_PATH: ghidra analyzeHeadless script
        BINSLICER__BACKENDS__TIMEOUT_SEC: per-command timeout for backend tools
    """

    rizin_path: str | None = None
    ghidra_path: str | None = None
    timeout_sec: float = Field(default=300.0, gt=0)


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open(encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigError.parse_failed(str(path), str(e)) from e


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class bound to one YAML snapshot."""

    class BinSlicerSettings(BaseSettings):
        """Root settings. Env vars: BINSLICER__LOGGING__LEVEL, etc."""

        model_config = SettingsConfigDict(
            env_prefix="BINSLICER__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingSettings = LoggingSettings()
        backends: BackendSettings = BackendSettings()

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml file
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return BinSlicerSettings


BinSlicerSettings = _make_settings_class({})


def load_settings(config_path: Path | None = None, **kwargs: Any) -> Any:
    """Load settings: defaults < global yaml < env vars < kwargs.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    path = config_path or GLOBAL_CONFIG_PATH
    settings_cls = _make_settings_class(_load_yaml(path))
    try:
        return settings_cls(**kwargs)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"])
        raise ConfigError.parse_failed(str(path), f"{field}: {err['msg']}") from e
