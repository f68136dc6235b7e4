"""Bounded polling for asynchronous readiness signals.

Every asynchronous cluster operation (node join, deployment rollout,
ingress controller start) is followed by a blocking wait. Waits are a poll
loop over a predicate with an explicit deadline: ``wait_until`` returns as
soon as the predicate holds and raises ``ReadinessTimeoutError`` once the
deadline passes. There is no partial success and no automatic retry.

The clock is injectable so deadline behaviour can be exercised without real
sleeps:

    clock = FakeClock()
    wait_until(lambda: clock.now >= 5, timeout=10, clock=clock)

"""

from __future__ import annotations

import dataclasses
import time
import typing as typ

from argo_lab.k8s import get_deployment, get_nodes
from argo_lab.logging import get_logger, log_info
from argo_lab.validation import ReadinessTimeoutError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

_DEFAULT_INTERVAL = 2.0


class Clock(typ.Protocol):
    """Time source used by the poll loop."""

    def monotonic(self) -> float:
        """Return a monotonic timestamp in seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds``."""
        ...


class SystemClock:
    """Wall-clock implementation of ``Clock``."""

    def monotonic(self) -> float:
        """Return ``time.monotonic()``."""
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Delegate to ``time.sleep``."""
        time.sleep(seconds)


@dataclasses.dataclass(frozen=True, slots=True)
class Satisfied:
    """A wait that completed; ``elapsed`` is seconds since the wait began."""

    elapsed: float


def wait_until(
    predicate: cabc.Callable[[], bool],
    timeout: float,
    *,
    description: str = "condition",
    interval: float = _DEFAULT_INTERVAL,
    clock: Clock | None = None,
) -> Satisfied:
    """Poll ``predicate`` until it returns True or the deadline passes.

    The predicate is evaluated immediately, then after each sleep. The last
    sleep is clipped to the deadline and the predicate gets one final
    evaluation there, so a condition that becomes true just before the
    deadline is still observed.

    Parameters
    ----------
    predicate : Callable[[], bool]
        Condition to poll.
    timeout : float
        Seconds until the deadline. Must be positive.
    description : str
        Human-readable name of the condition, used in errors.
    interval : float
        Seconds between polls. Must be positive.
    clock : Clock, optional
        Time source; defaults to ``SystemClock``.

    Returns
    -------
    Satisfied
        Elapsed time when the predicate first held.

    Raises
    ------
    ValueError
        If timeout or interval is not positive.
    ReadinessTimeoutError
        If the predicate never held before the deadline.

    """
    if timeout <= 0:
        msg = f"timeout must be positive, got {timeout}"
        raise ValueError(msg)
    if interval <= 0:
        msg = f"interval must be positive, got {interval}"
        raise ValueError(msg)

    clock = clock or SystemClock()
    start = clock.monotonic()
    deadline = start + timeout
    while True:
        if predicate():
            return Satisfied(elapsed=clock.monotonic() - start)
        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            raise ReadinessTimeoutError(description, timeout)
        clock.sleep(min(interval, remaining))


def nodes_ready(expected: cabc.Collection[str], env: dict[str, str]) -> bool:
    """Return True when every expected node is registered and Ready."""
    nodes = get_nodes(env)
    if not nodes:
        return False
    ready = {node.metadata.name for node in nodes if node.ready}
    return bool(expected) and set(expected) <= ready


def deployment_available(name: str, namespace: str, env: dict[str, str]) -> bool:
    """Return True when the deployment reports ``Available=True``."""
    deployment = get_deployment(name, namespace, env)
    return deployment is not None and deployment.available


def deployment_rolled_out(name: str, namespace: str, env: dict[str, str]) -> bool:
    """Return True when the deployment's latest revision is fully rolled out."""
    deployment = get_deployment(name, namespace, env)
    return deployment is not None and deployment.rolled_out


def wait_for_nodes_ready(
    expected: cabc.Collection[str],
    env: dict[str, str],
    timeout: float = 300,
    *,
    interval: float = _DEFAULT_INTERVAL,
    clock: Clock | None = None,
) -> Satisfied:
    """Wait for every node the backend reports to become Ready."""
    log_info(logger, "Waiting for %d node(s) to be Ready...", len(expected))
    return wait_until(
        lambda: nodes_ready(expected, env),
        timeout,
        description=f"nodes {', '.join(expected)} to be Ready",
        interval=interval,
        clock=clock,
    )


def wait_for_deployment_available(  # noqa: PLR0913
    name: str,
    namespace: str,
    env: dict[str, str],
    timeout: float = 600,
    *,
    interval: float = _DEFAULT_INTERVAL,
    clock: Clock | None = None,
) -> Satisfied:
    """Wait for a single deployment to become available."""
    log_info(logger, "Waiting for deployment/%s in %s...", name, namespace)
    return wait_until(
        lambda: deployment_available(name, namespace, env),
        timeout,
        description=f"deployment/{name} in '{namespace}' to be available",
        interval=interval,
        clock=clock,
    )


def wait_for_rollout(  # noqa: PLR0913
    name: str,
    namespace: str,
    env: dict[str, str],
    timeout: float = 600,
    *,
    interval: float = _DEFAULT_INTERVAL,
    clock: Clock | None = None,
) -> Satisfied:
    """Wait for a patched or restarted deployment to finish rolling out.

    Use this after changing a pod template: ``Available`` stays True while
    the old replicas keep serving, so it cannot tell when the change landed.
    """
    log_info(logger, "Waiting for rollout of deployment/%s in %s...", name, namespace)
    return wait_until(
        lambda: deployment_rolled_out(name, namespace, env),
        timeout,
        description=f"deployment/{name} in '{namespace}' to finish rolling out",
        interval=interval,
        clock=clock,
    )


def wait_for_deployments(  # noqa: PLR0913
    names: cabc.Sequence[str],
    namespace: str,
    env: dict[str, str],
    timeout: float = 600,
    *,
    interval: float = _DEFAULT_INTERVAL,
    clock: Clock | None = None,
) -> list[Satisfied]:
    """Wait for each deployment in order, each with its own deadline.

    Waits run sequentially, so the total can reach ``len(names) * timeout``.
    The first timeout aborts the remaining waits.
    """
    return [
        wait_for_deployment_available(
            name, namespace, env, timeout, interval=interval, clock=clock
        )
        for name in names
    ]
