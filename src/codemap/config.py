"""Configuration for codemap runs.

The configuration lives in ``.codemap/config.toml`` and is written there by
``codemap init``. Loading is lenient about a missing file (defaults apply)
but strict about values: anything out of range raises ``ConfigError``.

Example:
    >>> config = load_config(Path('/my/project/.codemap/config.toml'))
    >>> config.default_analysis_files
    7
    >>> config.ranking_weights.centrality
    0.35
"""

import hashlib
import json
import logging
import os
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import toml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = ".codemap"
CONFIG_FILE = "config.toml"
API_KEY_ENV = "OPENAI_API_KEY"
SUPPORTED_PROVIDERS = ("openai",)

DEFAULT_CONFIG_TEXT = """# Number of entry points to rank and report (top-K)
default_analysis_files = 7

# Number of past runs listed by `codemap show`
default_history_count = 3

# Project tag used in reports
project_name = "my-project"

# Files larger than this many bytes are skipped
max_file_size = 1048576

# Ask the AI collaborator to re-rank entry points (never required)
enable_ai_insights = false

# Extra ignore patterns, matched against every path component
ignore = []
use_gitignore = true
workers = 4

[ai]
provider = "openai"        # openai
model = "gpt-4o-mini"
api_key = ""               # or set OPENAI_API_KEY in env
max_tokens = 800
timeout = 30.0
max_prompt_chars = 4000

[thresholds]
complexity = 10
function_length = 60
architecture_min_confidence = 0.5

[weights.maintainability]
complexity = 0.5
comments = 0.2
length = 0.3

[weights.ranking]
centrality = 0.35
naming = 0.25
complexity = 0.10
recency = 0.10
exports = 0.20

[retention]
snapshots = 10
tombstone_runs = 5
"""


@dataclass(frozen=True)
class AISettings:
    """Settings for the optional insight collaborator."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    max_tokens: int = 800
    timeout: float = 30.0
    max_prompt_chars: int = 4000

    def resolve_api_key(self) -> Optional[str]:
        """Return the API key, letting the environment override the file."""
        return os.environ.get(API_KEY_ENV) or self.api_key or None


@dataclass(frozen=True)
class Thresholds:
    """Limits that mark a function as technical debt, plus the pattern cutoff."""

    complexity: int = 10
    function_length: int = 60
    architecture_min_confidence: float = 0.5


@dataclass(frozen=True)
class MaintainabilityWeights:
    complexity: float = 0.5
    comments: float = 0.2
    length: float = 0.3


@dataclass(frozen=True)
class RankingWeights:
    centrality: float = 0.35
    naming: float = 0.25
    complexity: float = 0.10
    recency: float = 0.10
    exports: float = 0.20


@dataclass(frozen=True)
class Retention:
    snapshots: int = 10
    tombstone_runs: int = 5


@dataclass(frozen=True)
class CodemapConfig:
    """Validated configuration for one project.

    Attributes:
        project_name: Name shown in reports. Empty means the root dir name.
        default_analysis_files: Number of entry points to return (top-K).
        default_history_count: Number of past runs ``codemap show`` lists.
        max_file_size: Files larger than this (bytes) are skipped.
        enable_ai_insights: Offer the top-K to the AI collaborator.
        ignore: Extra ignore patterns.
        use_gitignore: Add patterns from the project's .gitignore.
        workers: Thread pool size for extraction and metrics.
    """

    project_name: str = ""
    default_analysis_files: int = 7
    default_history_count: int = 3
    max_file_size: int = 1_048_576
    enable_ai_insights: bool = False
    ignore: tuple = ()
    use_gitignore: bool = True
    workers: int = 4
    ai: AISettings = field(default_factory=AISettings)
    thresholds: Thresholds = field(default_factory=Thresholds)
    maintainability_weights: MaintainabilityWeights = field(
        default_factory=MaintainabilityWeights
    )
    ranking_weights: RankingWeights = field(default_factory=RankingWeights)
    retention: Retention = field(default_factory=Retention)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CodemapConfig":
        """Build and validate a config from parsed TOML.

        Args:
            data: Parsed TOML document.

        Returns:
            The validated configuration.

        Raises:
            ConfigError: If any value has the wrong type or is out of range.
        """
        known = {f.name for f in fields(cls)} | {"weights"}
        for key in data:
            if key not in known:
                logger.warning("Ignoring unknown config option: %s", key)

        weights = _section(data, "weights")
        config = cls(
            project_name=_typed(data, "project_name", str, ""),
            default_analysis_files=_typed(data, "default_analysis_files", int, 7),
            default_history_count=_typed(data, "default_history_count", int, 3),
            max_file_size=_typed(data, "max_file_size", int, 1_048_576),
            enable_ai_insights=_typed(data, "enable_ai_insights", bool, False),
            ignore=tuple(_string_list(data, "ignore")),
            use_gitignore=_typed(data, "use_gitignore", bool, True),
            workers=_typed(data, "workers", int, 4),
            ai=_build(AISettings, _section(data, "ai"), "ai"),
            thresholds=_build(Thresholds, _section(data, "thresholds"), "thresholds"),
            maintainability_weights=_build(
                MaintainabilityWeights,
                _section(weights, "maintainability"),
                "weights.maintainability",
            ),
            ranking_weights=_build(RankingWeights, _section(weights, "ranking"), "weights.ranking"),
            retention=_build(Retention, _section(data, "retention"), "retention"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigError: On the first invalid value.
        """
        positive = {
            "default_analysis_files": self.default_analysis_files,
            "default_history_count": self.default_history_count,
            "max_file_size": self.max_file_size,
            "workers": self.workers,
            "ai.max_tokens": self.ai.max_tokens,
            "ai.max_prompt_chars": self.ai.max_prompt_chars,
            "thresholds.complexity": self.thresholds.complexity,
            "thresholds.function_length": self.thresholds.function_length,
            "retention.snapshots": self.retention.snapshots,
            "retention.tombstone_runs": self.retention.tombstone_runs,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")

        if self.ai.timeout <= 0:
            raise ConfigError(f"ai.timeout must be positive, got {self.ai.timeout}")
        if self.ai.provider not in SUPPORTED_PROVIDERS:
            raise ConfigError(
                f"ai.provider must be one of {', '.join(SUPPORTED_PROVIDERS)}, "
                f"got {self.ai.provider!r}"
            )
        if not 0.0 <= self.thresholds.architecture_min_confidence <= 1.0:
            raise ConfigError("thresholds.architecture_min_confidence must lie in [0, 1]")

        for section, weights in (
            ("weights.maintainability", self.maintainability_weights),
            ("weights.ranking", self.ranking_weights),
        ):
            values = asdict(weights)
            negative = [name for name, value in values.items() if value < 0]
            if negative:
                raise ConfigError(f"{section}.{negative[0]} must not be negative")
            if sum(values.values()) <= 0:
                raise ConfigError(f"{section} weights must not all be zero")

    def to_dict(self) -> Dict[str, Any]:
        """Return the config in the TOML layout (see ``DEFAULT_CONFIG_TEXT``)."""
        return {
            "project_name": self.project_name,
            "default_analysis_files": self.default_analysis_files,
            "default_history_count": self.default_history_count,
            "max_file_size": self.max_file_size,
            "enable_ai_insights": self.enable_ai_insights,
            "ignore": list(self.ignore),
            "use_gitignore": self.use_gitignore,
            "workers": self.workers,
            "ai": asdict(self.ai),
            "thresholds": asdict(self.thresholds),
            "weights": {
                "maintainability": asdict(self.maintainability_weights),
                "ranking": asdict(self.ranking_weights),
            },
            "retention": asdict(self.retention),
        }

    def digest(self) -> str:
        """SHA-256 of the canonical config, with the API key left out."""
        data = self.to_dict()
        data["ai"] = {k: v for k, v in data["ai"].items() if k != "api_key"}
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return value


def _typed(data: Mapping[str, Any], name: str, kind: type, default: Any) -> Any:
    if name not in data:
        return default
    value = data[name]
    # bool is a subclass of int; reject it where a number is expected
    if kind is int and isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if kind is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, kind):
        raise ConfigError(f"{name} must be of type {kind.__name__}, got {value!r}")
    return value


def _string_list(data: Mapping[str, Any], name: str) -> List[str]:
    value = data.get(name, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{name} must be a list of strings")
    return value


def _build(cls: type, data: Mapping[str, Any], section: str) -> Any:
    kwargs = {}
    for f in fields(cls):
        if f.name in data:
            kind = type(f.default)
            kwargs[f.name] = _typed(data, f.name, kind, f.default)
    unknown = set(data) - {f.name for f in fields(cls)}
    for key in sorted(unknown):
        logger.warning("Ignoring unknown config option: %s.%s", section, key)
    return cls(**kwargs)


def config_path(root: Path) -> Path:
    """Return ``<root>/.codemap/config.toml``."""
    return Path(root) / CONFIG_DIR / CONFIG_FILE


def load_config(path: Path) -> CodemapConfig:
    """Load and validate a config file.

    A missing file yields the defaults, as a fresh checkout without
    ``codemap init`` still has to be analyzable.

    Args:
        path: Path to config.toml.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: If the file is not valid TOML or holds invalid values.
    """
    path = Path(path)
    if not path.exists():
        logger.debug("No config at %s, using defaults", path)
        return CodemapConfig()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path} is not valid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    return CodemapConfig.from_dict(data)


def save_config(path: Path, config: CodemapConfig) -> None:
    """Write ``config`` to ``path`` as TOML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(toml.dumps(config.to_dict()), encoding="utf-8")
