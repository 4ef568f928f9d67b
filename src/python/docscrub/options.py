import os
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional

EPOCH_TIMESTAMP = "1970-01-01T00:00:00Z"

ENV_AUTHOR = "DOCSCRUB_AUTHOR"
ENV_INITIALS = "DOCSCRUB_INITIALS"
ENV_SCRUB_REVISION_DATES = "DOCSCRUB_SCRUB_REVISION_DATES"

# Environment variable -> ResourceLimits field
LIMIT_ENV_VARS: Dict[str, str] = {
    "DOCSCRUB_MAX_INPUT_BYTES": "max_input_bytes",
    "DOCSCRUB_MAX_ENTRIES": "max_entries",
    "DOCSCRUB_MAX_PART_BYTES": "max_part_bytes",
    "DOCSCRUB_MAX_TOTAL_BYTES": "max_total_bytes",
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ResourceLimits:
    """Upper bounds checked before any part of the container is parsed."""

    max_input_bytes: int = 100 * 1024 * 1024
    max_entries: int = 10_000
    max_part_bytes: int = 256 * 1024 * 1024
    max_total_bytes: int = 1024 * 1024 * 1024

    def __post_init__(self):
        for name in ("max_input_bytes", "max_entries", "max_part_bytes", "max_total_bytes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass(frozen=True)
class AnonymizerOptions:
    """Replacement values and guards applied by the pipeline stages."""

    author_placeholder: str = "Author"
    initials_placeholder: str = "A"
    epoch: str = EPOCH_TIMESTAMP
    # w:date on tracked changes is left alone unless asked for
    scrub_revision_dates: bool = False
    limits: ResourceLimits = field(default_factory=ResourceLimits)

    def __post_init__(self):
        if not self.author_placeholder:
            raise ValueError("author_placeholder must not be empty")
        if not self.initials_placeholder:
            raise ValueError("initials_placeholder must not be empty")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AnonymizerOptions":
        """Build options from DOCSCRUB_* environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()

        limit_values = {}
        for var, field_name in LIMIT_ENV_VARS.items():
            raw = (env.get(var) or "").strip()
            if not raw:
                continue
            try:
                limit_values[field_name] = int(raw)
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {raw!r}")

        scrub_dates = (env.get(ENV_SCRUB_REVISION_DATES) or "").strip().lower() in _TRUTHY

        return cls(
            author_placeholder=(env.get(ENV_AUTHOR) or "").strip() or defaults.author_placeholder,
            initials_placeholder=(env.get(ENV_INITIALS) or "").strip() or defaults.initials_placeholder,
            scrub_revision_dates=scrub_dates,
            limits=replace(defaults.limits, **limit_values),
        )

    def with_overrides(self, **changes) -> "AnonymizerOptions":
        """Return a copy with non-None values replaced; limit fields are routed to ``limits``."""
        changes = {k: v for k, v in changes.items() if v is not None}
        limit_changes = {k: changes.pop(k) for k in list(changes) if k in LIMIT_ENV_VARS.values()}
        if limit_changes:
            changes["limits"] = replace(self.limits, **limit_changes)
        return replace(self, **changes)
