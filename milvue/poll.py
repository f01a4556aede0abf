"""
Polling of the study status endpoint.

A study moves through ``queued -> processing -> done`` (or ``error``). The
StudyPoller repeatedly asks for the status until a terminal state is reached,
the attempt budget is spent or the overall deadline elapses. Network failures
of a single check are retried with exponential backoff, up to a bound.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .exceptions import NetworkError, PollTimeoutError, ProcessingError
from .models import PollPolicy, ProcessingStatus, StatusResponse
from .utils.logger import logger

StatusCheck = Callable[[str], Awaitable[StatusResponse]]


@dataclass(slots=True)
class PollResult:
    """Outcome of a poll loop that reached ``done``."""

    study_uid: str
    response: StatusResponse
    history: list[ProcessingStatus] = field(default_factory=list)
    attempts: int = 0


class StudyPoller:
    """Drives the status state machine of one study.

    Args:
        check: Coroutine function returning the current StatusResponse of a study
        policy: Timing and retry budget
        sleep: Coroutine used to wait between checks
        clock: Monotonic clock used for the deadline
    """

    def __init__(
        self,
        check: StatusCheck,
        policy: PollPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.check = check
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self._clock = clock

    async def _wait(self, delay: float, deadline: float) -> None:
        remaining = deadline - self._clock()
        if remaining <= 0:
            return
        await self._sleep(min(delay, remaining))

    async def run(self, study_uid: str) -> PollResult:
        """Poll until the study is done.

        Returns:
            The final status and the sequence of states observed

        Raises:
            ProcessingError: If the API reports an error for the study
            PollTimeoutError: If the deadline or the attempt budget is exhausted
            NetworkError: If more than ``max_network_retries`` checks fail in a row
            RemoteError: If the status endpoint answers with an error status
        """
        policy = self.policy
        deadline = self._clock() + policy.max_wait
        history: list[ProcessingStatus] = []
        attempts = 0
        failures = 0

        while attempts < policy.max_attempts:
            if self._clock() >= deadline:
                raise PollTimeoutError(
                    f"Study {study_uid} not processed after {policy.max_wait}s "
                    f"(last status: {history[-1].value if history else 'unknown'})"
                )

            attempts += 1
            try:
                response = await self.check(study_uid)
            except NetworkError as e:
                failures += 1
                if failures > policy.max_network_retries:
                    logger.error(
                        f"Status check for study {study_uid} failed {failures} times in a row, "
                        "giving up"
                    )
                    raise
                if attempts >= policy.max_attempts:
                    break
                delay = policy.backoff_delay(failures)
                logger.warning(
                    f"Status check for study {study_uid} failed ({e}), "
                    f"retry {failures}/{policy.max_network_retries} in {delay:.1f}s"
                )
                await self._wait(delay, deadline)
                continue

            failures = 0
            status = response.processing_status
            if not history or history[-1] != status:
                logger.info(f"Study {study_uid}: {status.value}")
                history.append(status)

            if status.is_terminal:
                if status == ProcessingStatus.ERROR:
                    raise ProcessingError(study_uid, response.message)
                return PollResult(
                    study_uid=study_uid, response=response, history=history, attempts=attempts
                )

            if attempts >= policy.max_attempts:
                break
            logger.debug(f"Waiting for study {study_uid} to be done...")
            await self._wait(policy.interval, deadline)

        raise PollTimeoutError(
            f"Study {study_uid} not processed after {attempts} status checks "
            f"(last status: {history[-1].value if history else 'unknown'})"
        )
