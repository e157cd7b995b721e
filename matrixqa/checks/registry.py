"""Registry of external and custom checks.

A check is any callable ``(screen_id, profile, screenshot) -> CheckResult``
registered under a name and a gate category. Runs select checks by name
through ``RunConfig.checks``; the CLI adds every check a suite file declares.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from matrixqa.errors import ConfigInvalid
from matrixqa.models.device import DeviceProfile
from matrixqa.models.gate import CheckResult
from matrixqa.models.screenshot import Screenshot

logger = logging.getLogger(__name__)

CheckFn = Callable[[str, DeviceProfile, Optional[Screenshot]], Any]

# categories owned by the diff engine and metrics collector
RESERVED_CATEGORIES = frozenset({"visual", "performance"})


@dataclass(frozen=True)
class RegisteredCheck:
    name: str
    category: str
    fn: CheckFn


class CheckRegistry:
    def __init__(self) -> None:
        self._checks: dict[str, RegisteredCheck] = {}

    def register(self, name: str, category: str, fn: CheckFn) -> None:
        if category in RESERVED_CATEGORIES:
            raise ValueError(f"Category '{category}' is reserved")
        if name in self._checks:
            raise ValueError(f"Check '{name}' is already registered")
        self._checks[name] = RegisteredCheck(name=name, category=category, fn=fn)
        logger.debug("Registered check %s (category=%s)", name, category)

    def register_path(self, name: str, category: str, target: str) -> None:
        """Register a check given as ``package.module:attribute``."""
        self.register(name, category, load_object(target))

    def names(self) -> list[str]:
        return list(self._checks)

    def get(self, name: str) -> RegisteredCheck:
        return self._checks[name]

    def validate(self, selected: list[str]) -> None:
        unknown = [n for n in selected if n not in self._checks]
        if unknown:
            raise ConfigInvalid([f"checks: unknown check '{n}'" for n in unknown])

    def run(
        self,
        selected: list[str],
        screen_id: str,
        profile: DeviceProfile,
        screenshot: Screenshot | None,
    ) -> dict[str, CheckResult]:
        """Run the selected checks and merge results per category."""
        results: dict[str, CheckResult] = {}
        for name in selected:
            check = self._checks[name]
            result = _coerce(check.fn(screen_id, profile, screenshot))
            prev = results.get(check.category)
            if prev is not None:
                result = CheckResult(
                    passed=prev.passed and result.passed,
                    findings=list(prev.findings) + list(result.findings),
                )
            results[check.category] = result
        return results


def _coerce(value: Any) -> CheckResult:
    """Accept a CheckResult or a ``{"pass": bool, "findings": [...]}`` mapping."""
    if isinstance(value, CheckResult):
        return value
    if isinstance(value, dict):
        passed = value.get("pass", value.get("passed"))
        if not isinstance(passed, bool):
            raise TypeError(f"Check result must carry a boolean 'pass', got {value!r}")
        return CheckResult(passed=passed, findings=list(value.get("findings", [])))
    raise TypeError(f"Unsupported check result type: {type(value).__name__}")


def load_object(target: str) -> Any:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got '{target}'")
    obj = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj
