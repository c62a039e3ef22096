"""Policy DSL parser for YAML/JSON definitions.

Allows defining named retry and repeat policies declaratively, so
operators can tune backoff without touching code.

Example YAML:
```yaml
policies:
  cas-contention:
    kind: retry
    times: 16
    backoff:
      type: exponential
      first_ms: 2
      max_ms: 500
      factor: 2
    jitter:
      type: random
      factor: 0.5

  status-poll:
    kind: repeat
    timeout_ms: 60000
    backoff:
      type: fixed
      delay_ms: 1000
```

Usage:
    from docmesh.dsl import PolicyParser

    parser = PolicyParser()
    policies = parser.parse_file("policies.yaml")
    await engine.execute(producer, policies["cas-contention"])
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any

from docmesh.patterns.backoff import Backoff, Jitter
from docmesh.patterns.retry import RepeatPolicy, RetryPolicy

logger = logging.getLogger(__name__)

_KINDS: dict[str, type[RetryPolicy] | type[RepeatPolicy]] = {
    "retry": RetryPolicy,
    "repeat": RepeatPolicy,
}
_BACKOFF_TYPES = ("zero", "fixed", "exponential")
_JITTER_TYPES = ("none", "random")


def _ms(value: Any) -> timedelta:
    return timedelta(milliseconds=float(value))


def _is_number(value: Any) -> bool:
    # YAML booleans load as bool, which is an int subclass.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PolicyParser:
    """Parse policy definitions from YAML or JSON files.

    Converts declarative definitions into :class:`RetryPolicy` and
    :class:`RepeatPolicy` objects keyed by name.
    """

    def parse_file(self, filepath: str | Path) -> dict[str, RetryPolicy | RepeatPolicy]:
        """Parse policies from a YAML or JSON file.

        Raises:
            ValueError: If file format is invalid or required fields are missing
            FileNotFoundError: If file doesn't exist
        """
        path = Path(filepath)

        if not path.exists():
            raise FileNotFoundError(f"Policy file not found: {filepath}")

        content = path.read_text()

        if path.suffix in [".yaml", ".yml"]:
            return self.parse_yaml(content)
        elif path.suffix == ".json":
            return self.parse_json(content)
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}. Use .yaml, .yml, or .json")

    def parse_yaml(self, yaml_content: str) -> dict[str, RetryPolicy | RepeatPolicy]:
        """Parse policies from a YAML string.

        Raises:
            ImportError: If PyYAML is not installed
            ValueError: If YAML is invalid
        """
        try:
            import yaml
        except ImportError as exc:
            raise ImportError("PyYAML not installed. Install with: pip install pyyaml") from exc

        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML: {exc}") from exc

        return self.parse_dict(data)

    def parse_json(self, json_content: str) -> dict[str, RetryPolicy | RepeatPolicy]:
        """Parse policies from a JSON string.

        Raises:
            ValueError: If JSON is invalid
        """
        try:
            data = json.loads(json_content)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON: {exc}") from exc

        return self.parse_dict(data)

    def parse_dict(self, data: Any) -> dict[str, RetryPolicy | RepeatPolicy]:
        """Parse policies from an already-loaded mapping.

        Raises:
            ValueError: If the definition fails :meth:`validate`
        """
        errors = self.validate(data)
        if errors:
            raise ValueError("Invalid policy definition: " + "; ".join(errors))

        policies = {
            name: self._parse_policy(definition)
            for name, definition in data["policies"].items()
        }
        logger.info("Parsed %d polic%s", len(policies), "y" if len(policies) == 1 else "ies")
        return policies

    def _parse_policy(self, definition: dict[str, Any]) -> RetryPolicy | RepeatPolicy:
        policy_cls = _KINDS[definition.get("kind", "retry")]
        if "timeout_ms" in definition:
            policy = policy_cls.within(_ms(definition["timeout_ms"]))
        else:
            policy = policy_cls.times(int(definition.get("times", 1)))

        if "backoff" in definition:
            policy = policy.with_backoff(self._parse_backoff(definition["backoff"]))
        if "jitter" in definition:
            policy = policy.with_jitter(self._parse_jitter(definition["jitter"]))
        return policy

    def _parse_backoff(self, data: dict[str, Any]) -> Backoff:
        kind = data.get("type", "zero")
        if kind == "fixed":
            return Backoff.fixed(_ms(data["delay_ms"]))
        if kind == "exponential":
            return Backoff.exponential(
                _ms(data["first_ms"]),
                _ms(data["max_ms"]) if "max_ms" in data else None,
                factor=data.get("factor", 2),
                based_on_previous_value=bool(data.get("based_on_previous_value", False)),
            )
        return Backoff.zero()

    def _parse_jitter(self, data: dict[str, Any]) -> Jitter:
        if data.get("type", "none") == "random":
            return Jitter.random(float(data.get("factor", 0.5)))
        return Jitter.none()

    def validate(self, data: Any) -> list[str]:
        """Validate a policy definition and return a list of errors (empty if valid)."""
        errors: list[str] = []

        if not isinstance(data, dict) or "policies" not in data:
            return ["Missing required field: 'policies'"]
        policies = data["policies"]
        if not isinstance(policies, dict) or not policies:
            return ["Field 'policies' must be a non-empty mapping"]

        for name, definition in policies.items():
            if not isinstance(definition, dict):
                errors.append(f"Policy '{name}' must be a mapping")
                continue

            kind = definition.get("kind", "retry")
            if kind not in _KINDS:
                errors.append(f"Policy '{name}': unknown kind '{kind}'")

            if "times" in definition and "timeout_ms" in definition:
                errors.append(f"Policy '{name}': use either 'times' or 'timeout_ms', not both")
            times = definition.get("times", 1)
            if not _is_number(times) or not isinstance(times, int) or times < 1:
                errors.append(f"Policy '{name}': 'times' must be a positive integer")
            timeout = definition.get("timeout_ms", 1)
            if not _is_number(timeout) or timeout <= 0:
                errors.append(f"Policy '{name}': 'timeout_ms' must be positive")

            backoff = definition.get("backoff", {})
            if not isinstance(backoff, dict):
                errors.append(f"Policy '{name}': 'backoff' must be a mapping")
            else:
                errors.extend(self._validate_backoff(name, backoff))

            jitter = definition.get("jitter", {})
            if not isinstance(jitter, dict):
                errors.append(f"Policy '{name}': 'jitter' must be a mapping")
            elif jitter.get("type", "none") not in _JITTER_TYPES:
                errors.append(f"Policy '{name}': unknown jitter type '{jitter.get('type')}'")
            elif "factor" in jitter and not (
                _is_number(jitter["factor"]) and 0 < jitter["factor"] <= 1
            ):
                errors.append(f"Policy '{name}': jitter 'factor' must be a number in (0, 1]")

        return errors

    def _validate_backoff(self, name: str, backoff: dict[str, Any]) -> list[str]:
        backoff_type = backoff.get("type", "zero")
        if backoff_type not in _BACKOFF_TYPES:
            return [f"Policy '{name}': unknown backoff type '{backoff_type}'"]
        if backoff_type == "fixed" and "delay_ms" not in backoff:
            return [f"Policy '{name}': fixed backoff needs 'delay_ms'"]
        if backoff_type == "exponential" and "first_ms" not in backoff:
            return [f"Policy '{name}': exponential backoff needs 'first_ms'"]

        errors = [
            f"Policy '{name}': backoff '{key}' must be a non-negative number"
            for key in ("delay_ms", "first_ms", "max_ms")
            if key in backoff and not (_is_number(backoff[key]) and backoff[key] >= 0)
        ]
        if "factor" in backoff and not (_is_number(backoff["factor"]) and backoff["factor"] >= 1):
            errors.append(f"Policy '{name}': backoff 'factor' must be a number >= 1")
        if (
            "first_ms" in backoff
            and "max_ms" in backoff
            and not errors
            and backoff["max_ms"] < backoff["first_ms"]
        ):
            errors.append(f"Policy '{name}': backoff 'max_ms' must be >= 'first_ms'")
        if "based_on_previous_value" in backoff and not isinstance(
            backoff["based_on_previous_value"], bool
        ):
            errors.append(f"Policy '{name}': 'based_on_previous_value' must be true or false")
        return errors
