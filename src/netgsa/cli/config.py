"""
Configuration file support for the netgsa CLI.

Supports YAML and JSON config files with CLI argument override. A config
holds the shared file paths at the top level plus one section per command:

    input: data/expression.csv
    labels: data/labels.csv
    estimation:
      method: undirected
      lambdas: [0.05, 0.1, 0.2, 0.4]
      weights: [0.0]
      eta: 0.01
    testing:
      method: rehe
      kind: precision
      pathways: data/pathways.csv
      networks: results/networks
"""

from __future__ import annotations

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from netgsa.network.conditions import EstimationMethod
from netgsa.network.directed import RegressionPenalty
from netgsa.stats.influence import NetworkKind
from netgsa.stats.variance import VarianceMethod


@dataclass
class EstimationConfig:
    """Network estimation settings (``netgsa estimate``)."""
    method: str = "undirected"
    lambdas: List[float] = field(default_factory=lambda: [0.05, 0.1, 0.2, 0.4])
    weights: Optional[List[float]] = None
    eta: float = 0.0
    eps: float = 1e-8
    tol: float = 1e-4
    max_iter: int = 500
    penalty: str = "ridge"
    n_jobs: int = 1
    zero: Optional[str] = None
    one: Optional[str] = None
    directed_mask: Optional[str] = None
    order: Optional[str] = None


@dataclass
class TestingConfig:
    """Pathway test settings (``netgsa test``)."""
    __test__ = False

    method: str = "rehe"
    kind: Optional[str] = None
    pathways: Optional[str] = None
    networks: Optional[str] = None
    tolerance: float = 5.0
    alpha: float = 0.05


@dataclass
class ConfigSchema:
    """
    Complete configuration schema for the netgsa commands.

    Mirrors the CLI argument structure for consistency.
    """
    input: Optional[Path] = None
    labels: Optional[Path] = None
    output: Optional[Path] = None
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    testing: TestingConfig = field(default_factory=TestingConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> ConfigSchema:
        """Build from a loaded config; unknown keys raise ValueError."""
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}; expected {sorted(known)}")

        sections = {}
        for name, section_cls in (('estimation', EstimationConfig), ('testing', TestingConfig)):
            section = config.get(name) or {}
            if not isinstance(section, dict):
                raise ValueError(f"Config section '{name}' must be a mapping")
            allowed = {f.name for f in fields(section_cls)}
            extra = set(section) - allowed
            if extra:
                raise ValueError(f"Unknown keys in '{name}': {sorted(extra)}; expected {sorted(allowed)}")
            sections[name] = section_cls(**section)

        paths = {
            key: Path(config[key]) if config.get(key) is not None else None
            for key in ('input', 'labels', 'output')
        }
        return cls(**paths, **sections)


# section -> {config key: argparse destination}
_SECTION_ARGS = {
    None: {'input': 'input', 'labels': 'labels', 'output': 'output'},
    'estimation': {
        'method': 'network_method',
        'lambdas': 'lambdas',
        'weights': 'weights',
        'eta': 'eta',
        'eps': 'eps',
        'tol': 'tol',
        'max_iter': 'max_iter',
        'penalty': 'penalty',
        'n_jobs': 'n_jobs',
        'zero': 'zero',
        'one': 'one',
        'directed_mask': 'directed_mask',
        'order': 'order',
    },
    'testing': {
        'method': 'method',
        'kind': 'kind',
        'pathways': 'pathways',
        'networks': 'networks',
        'tolerance': 'tolerance',
        'alpha': 'alpha',
    },
}

_SHORT_TO_LONG = {
    'i': 'input',
    'o': 'output',
    'l': 'labels',
    'c': 'config',
    'p': 'pathways',
    'n': 'networks',
}

_PATH_ARGS = {
    'input', 'labels', 'output',
    'zero', 'one', 'directed_mask', 'order',
    'pathways', 'networks',
}


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("run.yaml"))
        >>> config['estimation']['lambdas']
        [0.05, 0.1, 0.2, 0.4]
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    try:
        with open(config_path, 'r') as f:
            if suffix == '.json':
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")
    return config


def validate_config(config: Dict[str, Any]) -> ConfigSchema:
    """
    Validate configuration structure and values.

    Returns:
        The parsed ConfigSchema

    Raises:
        ValueError: If a key is unknown or a value is out of range
    """
    schema = ConfigSchema.from_dict(config)
    est, tst = schema.estimation, schema.testing

    choices = (
        ('estimation.method', est.method, EstimationMethod),
        ('estimation.penalty', est.penalty, RegressionPenalty),
        ('testing.method', tst.method, VarianceMethod),
    )
    for name, value, enum_cls in choices:
        valid = [m.value for m in enum_cls]
        if value not in valid:
            raise ValueError(f"Invalid {name} '{value}'. Choose from: {', '.join(valid)}")
    if tst.kind is not None and tst.kind not in [k.value for k in NetworkKind]:
        raise ValueError(
            f"Invalid testing.kind '{tst.kind}'. Choose from: {', '.join(k.value for k in NetworkKind)}"
        )

    if not est.lambdas or any(not isinstance(v, (int, float)) or v < 0 for v in est.lambdas):
        raise ValueError(f"estimation.lambdas must be a non-empty list of non-negative numbers, got {est.lambdas}")
    if est.weights is not None and any(not isinstance(v, (int, float)) or v < 0 for v in est.weights):
        raise ValueError(f"estimation.weights must be non-negative numbers, got {est.weights}")
    for name, value in (('eta', est.eta), ('eps', est.eps)):
        if not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"estimation.{name} must be a non-negative number, got {value}")
    if not isinstance(est.max_iter, int) or est.max_iter <= 0:
        raise ValueError(f"estimation.max_iter must be a positive integer, got {est.max_iter}")
    if not isinstance(tst.tolerance, (int, float)) or tst.tolerance <= 0:
        raise ValueError(f"testing.tolerance must be a positive number of standard errors, got {tst.tolerance}")
    path_keys = (
        ('estimation', est, ('zero', 'one', 'directed_mask', 'order')),
        ('testing', tst, ('pathways', 'networks')),
    )
    for section, values, names in path_keys:
        for name in names:
            value = getattr(values, name)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{section}.{name} must be a path string, got {value!r}")
    if not (0 < tst.alpha < 1):
        raise ValueError(f"testing.alpha must be in (0, 1), got {tst.alpha}")
    return schema


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    """Destinations the user set on the command line."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in _SHORT_TO_LONG:
            explicit.add(_SHORT_TO_LONG[arg[1]])
    return explicit


def _merge_value(cli_value: Any, config_value: Any, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with a CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value
    if config_value is not None:
        return config_value
    return cli_value


def merge_config_with_args(
    config: Dict[str, Any],
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Only destinations the parser actually defines are touched, so the
    ``estimation`` section is ignored by ``netgsa test`` and vice versa.

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values);
                  if None, all args are treated as defaults

    Returns:
        New Namespace with merged values
    """
    explicit = _explicit_args(cli_args)
    merged = Namespace(**vars(args))

    for section, mapping in _SECTION_ARGS.items():
        values = config if section is None else (config.get(section) or {})
        for config_key, dest in mapping.items():
            if config_key not in values or not hasattr(merged, dest):
                continue
            config_value = values[config_key]
            if dest in _PATH_ARGS and config_value is not None:
                config_value = Path(config_value)
            # Long option names match destinations except the estimation method
            flag = 'method' if dest == 'network_method' else dest
            setattr(merged, dest, _merge_value(getattr(merged, dest), config_value, flag in explicit))

    return merged
