import dataclasses
import logging
import typing

import tenacity

from infragraph import errors, settings

logger = logging.getLogger(__name__)

T = typing.TypeVar("T")


@dataclasses.dataclass
class Backoff:
    """
    Exponential backoff between readiness polls.

    Fast resources settle within the first short interval; long-latency ones
    (database clusters, cache replication groups) quickly reach the cap and
    are polled every ``maximum`` seconds from then on.
    """

    initial: float = settings.POLL_INITIAL_INTERVAL
    maximum: float = settings.POLL_MAX_INTERVAL
    factor: float = settings.POLL_BACKOFF_FACTOR

    def wait(self) -> tenacity.wait_exponential:
        return tenacity.wait_exponential(
            multiplier=self.initial, max=self.maximum, exp_base=self.factor
        )


def _log_poll(address: str) -> typing.Callable[[tenacity.RetryCallState], None]:
    def log(retry_state: tenacity.RetryCallState) -> None:
        logger.debug(
            "%s: poll %d -> %s, next in %.2fs",
            address,
            retry_state.attempt_number,
            retry_state.outcome.result(),
            retry_state.next_action.sleep,
        )

    return log


async def wait_until(
    poll: typing.Callable[[], typing.Awaitable[T]],
    done: typing.Callable[[T], bool],
    *,
    address: str,
    timeout: float,
    backoff: typing.Optional[Backoff] = None,
) -> T:
    """
    Call ``poll`` until ``done`` accepts its result.

    The first poll is immediate; later ones follow ``backoff``. Raises
    :class:`~infragraph.errors.ReadinessTimeoutError` once ``timeout``
    seconds have passed without ``done`` accepting a result. Exceptions
    raised by ``poll`` propagate unchanged.
    """
    if backoff is None:
        backoff = Backoff()

    retrying = tenacity.AsyncRetrying(
        retry=tenacity.retry_if_result(lambda result: not done(result)),
        wait=backoff.wait(),
        stop=tenacity.stop_after_delay(timeout),
        before_sleep=_log_poll(address),
    )
    try:
        return await retrying(poll)
    except tenacity.RetryError as e:
        raise errors.ReadinessTimeoutError(address, timeout) from e
