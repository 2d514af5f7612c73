"""Run configuration for the markgen engine and CLI.

Configuration is a small YAML document::

    packages:
      - app.services
      - app.views
    test_mode: false
    merge_policy: union        # or first_wins
    strict_order: false
    max_rounds: 100
    handler_group: markgen.handlers

Every key is optional.  ``test_mode`` left unset defers to the
``MARKGEN_TEST_MODE`` environment flag.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from markgen.core.merge import MergePolicy
from markgen.core.registry import DEFAULT_ENTRYPOINT_GROUP


@dataclass(frozen=True)
class ProcessorConfig:
    """Settings for one processing run.

    Parameters
    ----------
    packages:
        Package scopes to scan.
    test_mode:
        Include ``TestOnly`` declarations.  ``None`` reads the environment.
    merge_policy:
        How dependency sets combine when units share a key.
    strict_order:
        Attempt a strict topological order before the best-effort one.
    max_rounds:
        Upper bound on retry rounds across all entries.
    handler_group:
        Entry-point group handlers are loaded from by the CLI.
    """

    packages: tuple[str, ...] = ()
    test_mode: bool | None = None
    merge_policy: MergePolicy = MergePolicy.UNION
    strict_order: bool = False
    max_rounds: int = 100
    handler_group: str = DEFAULT_ENTRYPOINT_GROUP

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be at least 1, got {self.max_rounds}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ProcessorConfig":
        """Build a config from a plain mapping.

        Raises
        ------
        ValueError
            On unknown keys or values of the wrong shape.
        """
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration key(s): {', '.join(unknown)}")

        packages = data.get("packages", ())
        if isinstance(packages, str):
            packages = (packages,)
        if not isinstance(packages, (list, tuple)):
            raise ValueError("packages must be a list of package names")

        policy = data.get("merge_policy", MergePolicy.UNION)
        try:
            merge_policy = MergePolicy(policy) if not isinstance(policy, MergePolicy) else policy
        except ValueError:
            choices = ", ".join(p.value for p in MergePolicy)
            raise ValueError(f"merge_policy must be one of: {choices}") from None

        test_mode = data.get("test_mode")
        if test_mode is not None and not isinstance(test_mode, bool):
            raise ValueError("test_mode must be true, false or omitted")

        return cls(
            packages=tuple(str(p) for p in packages),
            test_mode=test_mode,
            merge_policy=merge_policy,
            strict_order=bool(data.get("strict_order", False)),
            max_rounds=int(data.get("max_rounds", 100)),
            handler_group=str(data.get("handler_group", DEFAULT_ENTRYPOINT_GROUP)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a YAML-friendly mapping."""
        data = asdict(self)
        data["packages"] = list(self.packages)
        data["merge_policy"] = self.merge_policy.value
        return data

    def with_overrides(self, **overrides: Any) -> "ProcessorConfig":
        """Return a copy with every non-``None`` override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ProcessorConfig(**values)


def load_config(path: str | Path) -> ProcessorConfig:
    """Read a :class:`ProcessorConfig` from a YAML file.

    Raises
    ------
    ValueError
        If the document is not a mapping or contains invalid values.
    """
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    if data is not None and not isinstance(data, dict):
        raise ValueError(f"{path}: configuration must be a YAML mapping")
    return ProcessorConfig.from_dict(data)


def dump_config(config: ProcessorConfig) -> str:
    """Serialize *config* to YAML."""
    return yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False)
