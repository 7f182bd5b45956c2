"""Configuration loading and validation."""

from .models import (
    # Enums
    BrowserType,
    # Config models
    AppConfig,
    BrowserConfig,
    BroadcastConfig,
    BufferConfig,
    DatabaseConfig,
    FilterStepConfig,
    KeywordConfig,
    LoggingConfig,
    RegionConfig,
    RegionGroupConfig,
    RetryPolicyConfig,
    SearchConfig,
    StatusChannelConfig,
    StorageConfig,
    TraversalConfig,
)
from .search_space import (
    DEFAULT_FILTER_STEPS,
    FilterStep,
    Region,
    SearchSpace,
    default_search_space,
)
from .loader import (
    ConfigError,
    load_app_config,
    load_search_config,
    load_search_space,
    validate_search_config_file,
)

__all__ = [
    # Enums
    "BrowserType",
    # Config models
    "AppConfig",
    "BrowserConfig",
    "BroadcastConfig",
    "BufferConfig",
    "DatabaseConfig",
    "FilterStepConfig",
    "KeywordConfig",
    "LoggingConfig",
    "RegionConfig",
    "RegionGroupConfig",
    "RetryPolicyConfig",
    "SearchConfig",
    "StatusChannelConfig",
    "StorageConfig",
    "TraversalConfig",
    # Search space
    "DEFAULT_FILTER_STEPS",
    "FilterStep",
    "Region",
    "SearchSpace",
    "default_search_space",
    # Loaders
    "ConfigError",
    "load_app_config",
    "load_search_config",
    "load_search_space",
    "validate_search_config_file",
]
