"""Configuration management for debrepo.

Handles loading and validation of YAML configuration files describing a
repository: identity, architectures, components and their package sources,
plus fetch, retention, signing and index options.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..sources.base import (
    BuildSource,
    ListingSelect,
    ListingSource,
    LocalSource,
    PackageSource,
    UrlSource,
)
from ..sources.retry import RetryPolicy
from .checksum import HASH_MAPPING, STRONG_ALGORITHMS
from .errors import ConfigError

SUPPORTED_COMPRESSION = ("gz", "xz", "bz2")
SIGNING_POLICIES = ("fatal", "warn")
BUILD_TRIGGERS = ("changelog", "commit")

DEFAULT_CONFIG_PATH = "/etc/debrepo/config.yaml"


@dataclass
class ComponentConfig:
    """Configuration for one repository component."""

    name: str
    required: bool = True
    sources: List[PackageSource] = field(default_factory=list)


@dataclass
class RepositoryConfig:
    """Repository identity and layout."""

    root: str = "/srv/debrepo"
    origin: str = ""
    label: str = ""
    suite: str = "stable"
    codename: str = ""
    version: str = ""
    description: str = ""
    architectures: List[str] = field(default_factory=lambda: ["amd64"])
    components: List[ComponentConfig] = field(default_factory=list)

    @property
    def component_names(self) -> List[str]:
        return [c.name for c in self.components]

    def get_component(self, name: str) -> Optional[ComponentConfig]:
        for component in self.components:
            if component.name == name:
                return component
        return None


@dataclass
class RetentionConfig:
    """How much history survives a build.

    Attributes:
        versions: Versions kept per (name, architecture) per component
        snapshots: Published trees kept, including the live one
    """

    versions: int = 3
    snapshots: int = 2


@dataclass
class FetchConfig:
    """Download behaviour."""

    max_retries: int = 3
    backoff: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff: float = 60.0
    timeout: float = 60.0
    user_agent: str = "debrepo/0.1"
    cache_dir: Optional[str] = None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff=self.backoff,
            multiplier=self.backoff_multiplier,
            max_backoff=self.max_backoff,
        )


@dataclass
class SigningConfig:
    """Release signing options."""

    key_id: Optional[str] = None
    policy: str = "fatal"
    gpg: str = "gpg"
    homedir: Optional[str] = None
    timeout: int = 60

    @property
    def fatal(self) -> bool:
        return self.policy == "fatal"


@dataclass
class IndexConfig:
    """Packages index and Release manifest options."""

    compression: List[str] = field(default_factory=lambda: ["gz", "xz"])
    hashes: List[str] = field(default_factory=lambda: ["md5", "sha256"])
    valid_for_days: Optional[int] = None


@dataclass
class BuildConfig:
    """Options for building packages from source."""

    work_dir: Optional[str] = None
    sbuild: str = "sbuild"
    timeout: int = 3600
    force: bool = False


@dataclass
class LoggingConfig:
    """Log sink options, consumed by the command line only."""

    level: str = "INFO"
    log_dir: Optional[str] = None


@dataclass
class DebRepoConfig:
    """Top-level configuration for debrepo."""

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    workers: Optional[int] = None
    publish_partial: bool = True

    @property
    def root(self) -> Path:
        return Path(self.repository.root)

    @property
    def cache_dir(self) -> Path:
        if self.fetch.cache_dir:
            return Path(self.fetch.cache_dir)
        return self.root / "cache"

    @property
    def work_dir(self) -> Path:
        if self.build.work_dir:
            return Path(self.build.work_dir)
        return self.root / "build"

    @property
    def worker_count(self) -> int:
        return self.workers or os.cpu_count() or 1

    def all_sources(self) -> List[PackageSource]:
        """Every declared source in configuration order."""
        sources: List[PackageSource] = []
        for component in self.repository.components:
            sources.extend(component.sources)
        return sources


def parse_source_config(source_dict: Dict[str, Any], component: str) -> PackageSource:
    """Parse one package source declaration.

    Exactly one of ``path``, ``url``, ``listing`` or ``git`` selects the
    source type.

    Args:
        source_dict: Source configuration dictionary
        component: Component the source belongs to

    Returns:
        PackageSource variant

    Raises:
        ConfigError: If the declaration is ambiguous or incomplete
    """
    if not isinstance(source_dict, dict):
        raise ConfigError(f"Source in component {component} must be a mapping")

    keys = [k for k in ("path", "url", "listing", "git") if source_dict.get(k)]
    if len(keys) != 1:
        raise ConfigError(
            f"Source must declare exactly one of path, url, listing or git, got {keys or 'none'}",
            item=source_dict.get("name"),
        )
    kind = keys[0]
    name = source_dict.get("name") or _default_source_name(source_dict[kind])
    sha256 = source_dict.get("sha256")

    if kind == "path":
        return LocalSource(name=name, component=component, path=str(source_dict["path"]), sha256=sha256)
    if kind == "url":
        return UrlSource(name=name, component=component, url=source_dict["url"], sha256=sha256)
    if kind == "listing":
        select = source_dict.get("select", "latest")
        try:
            select_mode = ListingSelect(select)
        except ValueError:
            raise ConfigError(f"Unknown listing select mode: {select}", item=name)
        return ListingSource(
            name=name,
            component=component,
            url=source_dict["listing"],
            pattern=source_dict.get("pattern", r".*\.deb"),
            select=select_mode,
        )
    build_on = source_dict.get("build_on")
    if build_on is not None and build_on not in BUILD_TRIGGERS:
        raise ConfigError(
            f"build_on must be one of {', '.join(BUILD_TRIGGERS)}, got {build_on}", item=name
        )
    return BuildSource(
        name=name,
        component=component,
        git=source_dict["git"],
        branch=source_dict.get("branch"),
        prebuild=_string_list(source_dict.get("prebuild")),
        starting_build=_string_list(source_dict.get("starting_build")),
        depends=_string_list(source_dict.get("depends")),
        build_on=build_on,
    )


def _string_list(value) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _default_source_name(target: str) -> str:
    return target.rstrip("/").rsplit("/", 1)[-1]


def parse_component_config(name: str, component_dict: Optional[Dict[str, Any]]) -> ComponentConfig:
    """Parse a component and its sources.

    Args:
        name: Component name (e.g. "main")
        component_dict: Component configuration dictionary, or a bare list of sources

    Returns:
        ComponentConfig instance
    """
    if component_dict is None:
        component_dict = {}
    if isinstance(component_dict, list):
        component_dict = {"sources": component_dict}

    sources = [parse_source_config(s, name) for s in component_dict.get("sources", [])]
    return ComponentConfig(
        name=name,
        required=component_dict.get("required", True),
        sources=sources,
    )


def parse_repository_config(repo_dict: Dict[str, Any]) -> RepositoryConfig:
    """Parse the repository section."""
    components_raw = repo_dict.get("components", {})
    if isinstance(components_raw, list):
        # list of names without sources
        components_raw = {name: {} for name in components_raw}
    components = [parse_component_config(name, c) for name, c in components_raw.items()]

    suite = repo_dict.get("suite", "stable")
    return RepositoryConfig(
        root=str(repo_dict.get("root", "/srv/debrepo")),
        origin=repo_dict.get("origin", ""),
        label=repo_dict.get("label", ""),
        suite=suite,
        codename=repo_dict.get("codename", "") or suite,
        version=str(repo_dict.get("version", "")),
        description=repo_dict.get("description", ""),
        architectures=list(repo_dict.get("architectures", ["amd64"])),
        components=components,
    )


def parse_config(config_dict: Dict[str, Any]) -> DebRepoConfig:
    """Parse the full configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        Validated DebRepoConfig instance

    Raises:
        ConfigError: If validation fails
    """
    retention = config_dict.get("retention", {})
    fetch = config_dict.get("fetch", {})
    signing = config_dict.get("signing", {})
    index = config_dict.get("index", {})
    build = config_dict.get("build", {})
    logging_dict = config_dict.get("logging", {})

    config = DebRepoConfig(
        repository=parse_repository_config(config_dict.get("repository", {})),
        retention=RetentionConfig(
            versions=retention.get("versions", 3),
            snapshots=retention.get("snapshots", 2),
        ),
        fetch=FetchConfig(
            max_retries=fetch.get("max_retries", 3),
            backoff=fetch.get("backoff", 1.0),
            backoff_multiplier=fetch.get("backoff_multiplier", 2.0),
            max_backoff=fetch.get("max_backoff", 60.0),
            timeout=fetch.get("timeout", 60.0),
            user_agent=fetch.get("user_agent", "debrepo/0.1"),
            cache_dir=fetch.get("cache_dir"),
        ),
        signing=SigningConfig(
            key_id=signing.get("key_id"),
            policy=signing.get("policy", "fatal"),
            gpg=signing.get("gpg", "gpg"),
            homedir=signing.get("homedir"),
            timeout=signing.get("timeout", 60),
        ),
        index=IndexConfig(
            compression=list(index.get("compression", ["gz", "xz"])),
            hashes=[h.lower() for h in index.get("hashes", ["md5", "sha256"])],
            valid_for_days=index.get("valid_for_days"),
        ),
        build=BuildConfig(
            work_dir=build.get("work_dir"),
            sbuild=build.get("sbuild", "sbuild"),
            timeout=build.get("timeout", 3600),
            force=bool(build.get("force", False)),
        ),
        logging=LoggingConfig(
            level=logging_dict.get("level", "INFO"),
            log_dir=logging_dict.get("log_dir"),
        ),
        workers=config_dict.get("workers"),
        publish_partial=config_dict.get("publish_partial", True),
    )
    validate_config(config)
    return config


def validate_config(config: DebRepoConfig) -> None:
    """Check cross-field constraints.

    Raises:
        ConfigError: On the first violated constraint
    """
    repo = config.repository
    if not repo.architectures:
        raise ConfigError("At least one architecture is required")
    if "all" in repo.architectures:
        raise ConfigError("'all' is not a target architecture; arch-independent packages join every index")
    if not repo.components:
        raise ConfigError("At least one component is required")

    names = [s.name for s in config.all_sources()]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate source names: {', '.join(duplicates)}")

    if config.retention.versions < 1:
        raise ConfigError("retention.versions must be at least 1")
    if config.retention.snapshots < 2:
        raise ConfigError("retention.snapshots must be at least 2 to allow rollback")

    for algo in config.index.compression:
        if algo not in SUPPORTED_COMPRESSION:
            raise ConfigError(f"Unsupported compression: {algo}")
    for algo in config.index.hashes:
        if algo not in HASH_MAPPING:
            raise ConfigError(f"Unsupported hash algorithm: {algo}")
    if not any(a in STRONG_ALGORITHMS for a in config.index.hashes):
        raise ConfigError("index.hashes must include sha256 or sha512")

    if config.signing.policy not in SIGNING_POLICIES:
        raise ConfigError(f"signing.policy must be one of {', '.join(SIGNING_POLICIES)}")

    if config.workers is not None and config.workers < 1:
        raise ConfigError("workers must be at least 1")

    try:
        config.fetch.retry_policy()
    except ValueError as e:
        raise ConfigError(f"Invalid fetch settings: {e}") from e


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(config_path: str = DEFAULT_CONFIG_PATH) -> DebRepoConfig:
    """Load and parse configuration into typed dataclasses.

    Args:
        config_path: Path to configuration file

    Returns:
        DebRepoConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        ConfigError: If the configuration fails validation
    """
    config_dict = load_config(config_path)
    return parse_config(config_dict)
