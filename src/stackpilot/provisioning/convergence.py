"""Wait for a freshly provisioned host to accept administrative connections."""

from __future__ import annotations

import enum
import logging
import socket
import time
from collections.abc import Callable

import paramiko

from stackpilot.domain.models import ConnectionDescriptor
from stackpilot.provisioning.interfaces import ReachabilityProbe

logger = logging.getLogger(__name__)


class WaitState(str, enum.Enum):
    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed-out"


class SshReachabilityProbe:
    """Log in with the admin password and run ``echo ok``."""

    def __init__(self, timeout: float = 10.0, port: int = 22) -> None:
        self._timeout = timeout
        self._port = port

    def __call__(self, descriptor: ConnectionDescriptor) -> bool:
        client = paramiko.SSHClient()
        # Fresh hosts have no known_hosts entry yet.
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                descriptor.address,
                port=self._port,
                username=descriptor.admin_user,
                password=descriptor.admin_secret,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                look_for_keys=False,
                allow_agent=False,
            )
            _, stdout, _ = client.exec_command("echo ok", timeout=self._timeout)
            return stdout.channel.recv_exit_status() == 0
        except (paramiko.SSHException, socket.error, EOFError) as exc:
            logger.debug("SSH probe to %s failed: %s", descriptor.address, exc)
            return False
        finally:
            client.close()


class ConvergenceWaiter:
    """Bounded, sequential polling: ``WAITING -> READY | TIMED_OUT``.

    No probe is started at or after the deadline, the pause before the next probe
    is clipped to the time that is left, and polling stops at the first success.
    """

    def __init__(
        self,
        probe: ReachabilityProbe,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._probe = probe
        self._clock = clock
        self._sleep = sleep
        self.state = WaitState.WAITING
        self.attempts = 0
        self.elapsed = 0.0

    def await_ready(
        self,
        descriptor: ConnectionDescriptor,
        timeout: float,
        interval: float,
    ) -> bool:
        if timeout <= 0 or interval <= 0:
            raise ValueError("timeout and interval must be positive")
        self.state = WaitState.WAITING
        self.attempts = 0
        started = self._clock()
        deadline = started + timeout

        while True:
            now = self._clock()
            if now >= deadline:
                return self._finish(WaitState.TIMED_OUT, started, descriptor)
            self.attempts += 1
            try:
                reachable = bool(self._probe(descriptor))
            except Exception as exc:  # noqa: BLE001 - any probe error means "not yet"
                logger.debug("Probe %d raised %s", self.attempts, exc)
                reachable = False
            if reachable:
                return self._finish(WaitState.READY, started, descriptor)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return self._finish(WaitState.TIMED_OUT, started, descriptor)
            logger.info(
                "Waiting for %s (attempt %d, %.0fs left)",
                descriptor.address,
                self.attempts,
                remaining,
            )
            self._sleep(min(interval, remaining))

    def _finish(self, state: WaitState, started: float, descriptor: ConnectionDescriptor) -> bool:
        self.state = state
        self.elapsed = self._clock() - started
        if state is WaitState.READY:
            logger.info(
                "%s reachable after %d probes (%.1fs)",
                descriptor.address,
                self.attempts,
                self.elapsed,
            )
            return True
        logger.warning(
            "%s not reachable after %d probes (%.1fs)",
            descriptor.address,
            self.attempts,
            self.elapsed,
        )
        return False


def check_connectivity(descriptor: ConnectionDescriptor, probe: ReachabilityProbe) -> bool:
    """Single probe, no retry."""
    try:
        return bool(probe(descriptor))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Connectivity test to %s failed: %s", descriptor.address, exc)
        return False
