"""Settings read from the environment."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from coldbench.models import Target

RULE_PREFIX = "LambdaBenchmarkRule"
HTTP_TARGETS_PREFIX = "HTTP_TARGETS_"
# Name used by existing deployments, read when HTTP_TARGETS_<SET> is absent
LEGACY_TARGETS_PREFIX = "JSON_STRINGIFIED_TARGETS_"
DEFAULT_RUNTIMES = ("nodejs14.x",)


class ConfigError(Exception):
    """Missing or invalid configuration."""

    pass


def _int(environ: Mapping[str, str], name: str, default: int | None) -> int | None:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{value}'")
    if number < 0:
        raise ConfigError(f"{name} must not be negative, got {number}")
    return number


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{value}'")


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def parse_http_targets(name: str, value: str) -> list[Target]:
    """
    Parse a JSON list of HTTP targets.

    Example: [{"arn": "arn:aws:lambda:...:function:fn", "url": "https://...", "apiG": "rest"}]
    """
    try:
        entries = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{name} is not valid JSON: {e}")
    if not isinstance(entries, list):
        raise ConfigError(f"{name} must be a JSON list of targets")

    targets = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"{name} contains a non-object entry: {entry!r}")
        try:
            target = Target.from_dict(entry)
        except ValueError as e:
            raise ConfigError(f"{name}: {e}")
        if not target.is_http:
            raise ConfigError(f"{name}: target {target.identifier} has no http(s) url")
        targets.append(target)
    return targets


@dataclass
class Settings:
    """Configuration of a benchmark job run."""

    table_name: str | None = None
    region: str | None = None
    direct_targets: list[Target] = field(default_factory=list)
    http_target_sets: dict[str, list[Target]] = field(default_factory=dict)
    runtimes: list[str] = field(default_factory=lambda: list(DEFAULT_RUNTIMES))
    iterations: int = 100
    reconcile_delay_minutes: int = 10
    end_time_buffer_ms: int = 50
    max_attempts: int | None = 12
    max_age_minutes: int | None = 24 * 60
    log_max_pages: int | None = None
    http_timeout: float = 30.0
    target_attempts: int = 1
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """
        Build settings from environment variables.

        Raises:
            ConfigError: If a value is malformed
        """
        if environ is None:
            environ = os.environ

        http_target_sets: dict[str, list[Target]] = {}
        for prefix in (LEGACY_TARGETS_PREFIX, HTTP_TARGETS_PREFIX):
            http_target_sets.update(
                (name[len(prefix):], parse_http_targets(name, value))
                for name, value in environ.items()
                if name.startswith(prefix) and value
            )

        settings = cls(
            table_name=environ.get("TABLE_NAME") or None,
            region=environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or None,
            direct_targets=[Target(identifier=arn, endpoint=arn) for arn in _split(environ.get("COMMA_SEP_ARNS"))],
            http_target_sets=http_target_sets,
            runtimes=_split(environ.get("COLDBENCH_RUNTIMES")) or list(DEFAULT_RUNTIMES),
            iterations=_int(environ, "COLDBENCH_ITERATIONS", 100),
            reconcile_delay_minutes=_int(environ, "COLDBENCH_RECONCILE_DELAY_MINUTES", 10),
            end_time_buffer_ms=_int(environ, "COLDBENCH_END_TIME_BUFFER_MS", 50),
            max_attempts=_int(environ, "COLDBENCH_MAX_ATTEMPTS", 12) or None,
            max_age_minutes=_int(environ, "COLDBENCH_MAX_AGE_MINUTES", 24 * 60) or None,
            log_max_pages=_int(environ, "COLDBENCH_LOG_MAX_PAGES", None) or None,
            http_timeout=_float(environ, "COLDBENCH_HTTP_TIMEOUT", 30.0),
            target_attempts=_int(environ, "COLDBENCH_TARGET_ATTEMPTS", 1),
            log_level=environ.get("COLDBENCH_LOG_LEVEL", "INFO").upper(),
        )
        if settings.iterations < 1:
            raise ConfigError("COLDBENCH_ITERATIONS must be at least 1")
        if settings.target_attempts < 1:
            raise ConfigError("COLDBENCH_TARGET_ATTEMPTS must be at least 1")
        return settings

    @property
    def reconcile_delay_ms(self) -> int:
        return self.reconcile_delay_minutes * 60 * 1000

    @property
    def max_age_ms(self) -> int | None:
        return self.max_age_minutes * 60 * 1000 if self.max_age_minutes else None

    def require_table(self) -> str:
        if not self.table_name:
            raise ConfigError("TABLE_NAME is not set")
        return self.table_name

    def require_direct_targets(self) -> list[Target]:
        if not self.direct_targets:
            raise ConfigError("COMMA_SEP_ARNS is not set")
        return self.direct_targets

    def http_targets_for(self, rule_name: str) -> list[Target]:
        """
        Return the HTTP target set selected by a schedule rule name.

        "LambdaBenchmarkRuleA" selects the set configured in HTTP_TARGETS_A.
        A bare set name is accepted as well.

        Raises:
            ConfigError: If no targets are configured for the rule
        """
        set_name = rule_name.split("/")[-1]
        if set_name.startswith(RULE_PREFIX):
            set_name = set_name[len(RULE_PREFIX):]

        targets = self.http_target_sets.get(set_name)
        if not targets:
            raise ConfigError(f"No HTTP targets configured for '{rule_name}' ({HTTP_TARGETS_PREFIX}{set_name})")
        return targets
