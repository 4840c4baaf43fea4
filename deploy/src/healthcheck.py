"""
Post-deployment health check.

The service's ``/health`` route is polled over HTTP until it answers 2xx or
the retry budget runs out; that result decides the deployment. The status
of the supporting system services is reported alongside it as warnings.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import requests
import structlog

from api.src.config import Settings
from deploy.src.config import DeploySettings
from deploy.src.errors import HealthCheckError
from deploy.src.runner import CommandRunner
from deploy.src.services import service_status
from shared.utils import RetryConfig, RetryMetrics, retry_with_backoff

logger = structlog.get_logger(__name__)


@dataclass
class PollResult:
    """Outcome of polling the health route."""
    ok: bool
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class HealthCheckSummary:
    poll: PollResult
    services: Dict[str, bool] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.poll.ok

    @property
    def stopped_services(self):
        return [name for name, running in self.services.items() if not running]


def poll_health(
    url: str,
    timeout: float = 5.0,
    retries: int = 5,
    interval: float = 3.0,
    session: Optional[requests.Session] = None,
) -> PollResult:
    """
    Poll ``url`` until it answers 2xx.

    A non-2xx answer or a connection error counts as a failed attempt and is
    retried after ``interval`` seconds, up to ``retries`` attempts in total.

    Args:
        url: Health route
        timeout: Per-attempt timeout (seconds)
        retries: Maximum attempts
        interval: Fixed wait between attempts (seconds)
        session: requests session to use (a new one is created if None)

    Returns:
        PollResult
    """
    owns_session = session is None
    session = session or requests.Session()
    retry_metrics = RetryMetrics()
    last_status: Dict[str, Optional[int]] = {"code": None}

    @retry_with_backoff(
        config=RetryConfig(
            max_attempts=retries,
            initial_delay=interval,
            max_delay=interval,
            exponential_base=1,
            jitter=False,
        ),
        retryable_exceptions=(requests.RequestException, HealthCheckError),
        metrics=retry_metrics,
    )
    def request_health() -> int:
        last_status["code"] = None
        response = session.get(url, timeout=timeout)
        last_status["code"] = response.status_code
        if not 200 <= response.status_code < 300:
            raise HealthCheckError(
                f"{url} answered {response.status_code}",
                status_code=response.status_code,
            )
        return response.status_code

    try:
        status_code = request_health()
    except (requests.RequestException, HealthCheckError) as e:
        logger.error(
            "health_check_failed",
            url=url,
            attempts=retry_metrics.total_attempts,
            status_code=last_status["code"],
            error=str(e),
        )
        return PollResult(
            ok=False,
            attempts=retry_metrics.total_attempts,
            status_code=last_status["code"],
            error=str(e),
        )
    finally:
        if owns_session:
            session.close()

    logger.info(
        "health_check_passed",
        url=url,
        attempts=retry_metrics.total_attempts,
        status_code=status_code,
    )
    return PollResult(ok=True, attempts=retry_metrics.total_attempts, status_code=status_code)


def run_health_check(
    settings: DeploySettings,
    runner: CommandRunner,
    session: Optional[requests.Session] = None,
    service: Optional[Settings] = None,
) -> HealthCheckSummary:
    """Poll the service and report on the monitored system services.

    Without an explicit ``health_url`` the service's own port is polled.
    """
    poll = poll_health(
        settings.resolve_health_url(service),
        timeout=settings.health_timeout,
        retries=settings.health_retries,
        interval=settings.health_interval,
        session=session,
    )
    services = service_status(runner, settings.monitored_services)

    summary = HealthCheckSummary(poll=poll, services=services)
    if summary.stopped_services:
        logger.warning("services_not_running", services=summary.stopped_services)
    return summary
