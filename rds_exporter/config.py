"""Configuration models using Pydantic for validation."""
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError(f"Invalid log level: {v}")
        return level


class AWSConfig(BaseModel):
    """Region and credential selection for the AWS clients."""
    region: str = "ap-northeast-2"
    profile: Optional[str] = None
    connect_timeout_s: int = Field(default=5, ge=1)
    read_timeout_s: int = Field(default=20, ge=1)


class ExporterConfig(BaseModel):
    """HTTP endpoint and collection loop settings."""
    host: str = "0.0.0.0"
    port: int = 9043
    collection_interval_s: int = Field(default=60, ge=1)
    prefix: str = "rds_"
    log_publisher: bool = False


class TargetConfig(BaseModel):
    """Fleet-wide tag filter selecting the instances to collect."""
    tag_key: str = "env"
    tag_value: str = "prd"


class CloudWatchConfig(BaseModel):
    """Time-series query settings."""
    namespace: str = "AWS/RDS"
    dimension_name: str = "DBInstanceIdentifier"
    period: int = Field(default=60, ge=1)
    stat: str = "Average"
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_s: float = Field(default=1.0, ge=0)
    timeout_s: float = Field(default=30.0, gt=0)
    window_s: int = Field(default=300, ge=1)


class RDSConfig(BaseModel):
    """Instance directory settings."""
    page_size: int = Field(default=100, ge=20, le=100)
    cache_ttl_s: float = Field(default=300.0, ge=0)
    max_retries: int = Field(default=3, ge=1)
    retry_delay_s: float = Field(default=1.0, ge=0)


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    aws: AWSConfig = Field(default_factory=AWSConfig)
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    target: TargetConfig = Field(default_factory=TargetConfig)
    cloudwatch: CloudWatchConfig = Field(default_factory=CloudWatchConfig)
    rds: RDSConfig = Field(default_factory=RDSConfig)

    @model_validator(mode='after')
    def validate_read_timeout(self):
        """Socket reads must give up before the time-series call deadline."""
        if self.aws.read_timeout_s >= self.cloudwatch.timeout_s:
            raise ValueError(
                f"aws.read_timeout_s ({self.aws.read_timeout_s}) must be shorter than "
                f"cloudwatch.timeout_s ({self.cloudwatch.timeout_s})"
            )
        return self


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "AWS_REGION": ("aws", "region"),
    "AWS_PROFILE": ("aws", "profile"),
    "LOG_LEVEL": ("global", "log_level"),
    "EXPORTER_PORT": ("exporter", "port"),
    "TARGET_TAG_KEY": ("target", "tag_key"),
    "TARGET_TAG_VALUE": ("target", "tag_value"),
}

# APP_<SECTION>__<KEY>, e.g. APP_CLOUDWATCH__TIMEOUT_S=20
ENV_PREFIX = "APP_"
ENV_SEPARATOR = "__"

DEFAULT_RUN_MODE = "development"


def _set_value(raw_config: dict, section: str, key: str, value):
    if not isinstance(raw_config.get(section), dict):
        raw_config[section] = {}
    raw_config[section][key] = value


def merge_config(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base; overlay values win."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(raw_config: dict) -> dict:
    """Overlay supported environment variables onto a raw config dict.

    The named variables in ENV_OVERRIDES are applied first, then any
    APP_<SECTION>__<KEY> variable, which wins on conflict.
    """
    for env_name, (section, key) in ENV_OVERRIDES.items():
        if env_value := os.getenv(env_name):
            _set_value(raw_config, section, key, env_value)

    for env_name, env_value in sorted(os.environ.items()):
        if not env_name.startswith(ENV_PREFIX) or not env_value:
            continue
        section, sep, key = env_name[len(ENV_PREFIX):].partition(ENV_SEPARATOR)
        if not sep or not section or not key:
            continue
        _set_value(raw_config, section.lower(), key.lower(), env_value)
    return raw_config


def _read_yaml(path: str) -> dict:
    import yaml

    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: Optional[str] = None, run_mode: Optional[str] = None) -> Config:
    """Load and validate configuration from a YAML file.

    Without a path the defaults are used. With a path, an optional
    ``<run_mode>.yaml`` next to it is merged on top; the run mode comes
    from the argument, else the RUN_MODE variable, else "development".
    Environment overrides are applied last in both cases.
    """
    raw_config = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        raw_config = _read_yaml(config_path)

        run_mode = run_mode or os.getenv("RUN_MODE") or DEFAULT_RUN_MODE
        overlay_path = os.path.join(os.path.dirname(config_path), f"{run_mode}.yaml")
        if os.path.exists(overlay_path) and not os.path.samefile(overlay_path, config_path):
            raw_config = merge_config(raw_config, _read_yaml(overlay_path))

    raw_config = apply_env_overrides(raw_config)

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
