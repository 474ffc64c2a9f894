"""
Startup validation.

Each check reports pass/warn/fail instead of raising so the process can log
every problem at once. A failed check disables the feature it guards.
"""

import logging
from dataclasses import dataclass
from typing import Literal

from config.policies import AutoScalePolicy
from config.settings import Settings
from providers.registry import SandboxProviderRegistry

from .errors import ProviderNotRegisteredError

logger = logging.getLogger(__name__)

CheckStatus = Literal["pass", "warn", "fail"]


@dataclass
class StartupCheckResult:
    name: str
    status: CheckStatus
    message: str


def run_startup_checks(
    settings: Settings,
    registry: SandboxProviderRegistry,
    autoscale_policy: AutoScalePolicy | None = None,
) -> list[StartupCheckResult]:
    results: list[StartupCheckResult] = []

    if settings.ghosthands_api_url and settings.gh_service_secret:
        results.append(StartupCheckResult("execution_backend", "pass", "GhostHands API configured"))
    elif settings.ghosthands_api_url:
        results.append(StartupCheckResult(
            "execution_backend", "warn", "GH_SERVICE_SECRET not set; backend calls will be rejected"
        ))
    else:
        results.append(StartupCheckResult(
            "execution_backend", "warn", "GHOSTHANDS_API_URL not set; task sync disabled"
        ))

    if settings.database_direct_url:
        results.append(StartupCheckResult("job_queue", "pass", "Job queue connection configured"))
    else:
        results.append(StartupCheckResult(
            "job_queue", "warn", "DATABASE_DIRECT_URL not set; job queue unavailable"
        ))

    if not settings.gh_deploy_secret:
        results.append(StartupCheckResult(
            "deploy_secret", "warn", "GH_DEPLOY_SECRET not set; macOS shutdown will be refused"
        ))

    if settings.autoscale_enabled:
        results.append(_check_autoscale(settings, registry, autoscale_policy))

    for result in results:
        log = {"pass": logger.info, "warn": logger.warning, "fail": logger.error}[result.status]
        log(f"[Startup] {result.name}: {result.status.upper()} - {result.message}")

    return results


def _check_autoscale(
    settings: Settings,
    registry: SandboxProviderRegistry,
    policy: AutoScalePolicy | None,
) -> StartupCheckResult:
    if policy is None:
        try:
            policy = AutoScalePolicy.from_settings(settings)
        except ValueError as e:
            return StartupCheckResult("autoscale", "fail", str(e))

    try:
        registry.ensure_registered(policy.machine_type)
    except ProviderNotRegisteredError as e:
        return StartupCheckResult("autoscale", "fail", f"{e}; auto-scaling will not start")

    return StartupCheckResult(
        "autoscale",
        "pass",
        f"Managing {policy.machine_type.value} ({policy.min_instances}-{policy.max_instances})",
    )


def has_failure(results: list[StartupCheckResult], name: str) -> bool:
    return any(r.name == name and r.status == "fail" for r in results)
