# qforge/utils/retry.py
"""
生成器调用的重试策略。
远端生成器（LLM、服务接口）常有瞬时故障，驱动器在放弃并使用兜底构建器之前按这里的策略重试。

Retry strategies for generator calls.
Remote generators (LLMs, service endpoints) fail transiently; the driver retries them with
one of these strategies before giving up and using the fallback builder.
"""

import time
import random
import asyncio
import inspect
import logging
import functools
from typing import Any, Callable, Iterator, Optional, Sequence, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')

ExceptionTypes = Union[Type[BaseException], Sequence[Type[BaseException]]]
RetryCallback = Callable[[int, Exception], None]


class RetryError(Exception):
    """
    重试次数耗尽。`last_exception` 为最后一次失败的原因，`attempts` 为总尝试次数。

    Raised once retries are exhausted. `last_exception` holds the final failure and
    `attempts` the total number of calls made.
    """

    def __init__(self, message: str, last_exception: Optional[Exception] = None, attempts: int = 0):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class RetryStrategy:
    """
    重试策略基类。子类只需给出第 n 次重试前的等待时间。

    Base retry strategy. Subclasses only decide how long to wait before retry n.
    """

    def __init__(self,
                 max_retries: int,
                 retry_exceptions: ExceptionTypes = Exception,
                 on_retry: Optional[RetryCallback] = None):
        """
        Args:
            max_retries: 首次调用之后最多再尝试几次 (How many extra attempts after the first call)
            retry_exceptions: 视为瞬时故障的异常类型 (Exception types treated as transient)
            on_retry: 每次等待前调用，参数为 (重试序号, 异常) (Called before each wait with (retry number, error))
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.retry_exceptions: Tuple[Type[BaseException], ...] = (
            (retry_exceptions,) if isinstance(retry_exceptions, type) else tuple(retry_exceptions)
        )
        self.on_retry = on_retry

    def get_delay(self, attempt: int) -> float:
        """
        第 attempt 次重试（从 1 开始）之前的等待秒数。

        Seconds to wait before retry number `attempt` (1-based).
        """
        raise NotImplementedError("Subclasses must implement get_delay()")

    # --- Attempt Bookkeeping ---

    def _schedule(self) -> Iterator[int]:
        return iter(range(self.max_retries + 1))

    def _before_wait(self, retry_number: int, error: Exception) -> float:
        """
        记录失败并返回需要等待的秒数。回调出错只记录日志，不影响重试。

        Record a failure and return the wait in seconds. A failing callback is logged and ignored.
        """
        delay = self.get_delay(retry_number)
        if self.on_retry is not None:
            try:
                self.on_retry(retry_number, error)
            except Exception as callback_error:
                logger.warning(f"on_retry callback raised: {callback_error}")
        logger.info(f"Attempt {retry_number} of {self.max_retries + 1} failed ({error}); "
                    f"retrying in {delay:.2f}s")
        return delay

    def _exhausted(self, last_exception: Optional[Exception]) -> RetryError:
        return RetryError(
            f"Gave up after {self.max_retries + 1} attempts: {last_exception}",
            last_exception=last_exception,
            attempts=self.max_retries + 1,
        )

    # --- Execution ---

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        同步调用 func，遇到可重试的异常时按策略等待后重试。

        Call func synchronously, waiting and retrying on retryable errors.

        Raises:
            RetryError: 所有尝试均失败 (Every attempt failed)
            其他异常: 不在 retry_exceptions 中的异常原样抛出 (Errors outside retry_exceptions propagate as-is)
        """
        last_exception: Optional[Exception] = None
        for attempt in self._schedule():
            if attempt:
                time.sleep(self._before_wait(attempt, last_exception))
            try:
                return func(*args, **kwargs)
            except self.retry_exceptions as e:
                last_exception = e
        raise self._exhausted(last_exception)

    async def execute_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        异步版本。func 可以是普通函数，也可以返回可等待对象；任务取消不会被重试。

        Async variant. func may be a plain callable or return an awaitable; cancellation is never retried.
        """
        last_exception: Optional[Exception] = None
        for attempt in self._schedule():
            if attempt:
                await asyncio.sleep(self._before_wait(attempt, last_exception))
            try:
                result = func(*args, **kwargs)
                return await result if inspect.isawaitable(result) else result
            except asyncio.CancelledError:
                raise
            except self.retry_exceptions as e:
                last_exception = e
        raise self._exhausted(last_exception)

    def decorate(self, func: Callable[..., T]) -> Callable[..., T]:
        """把 func 包装为带重试的版本，协程函数得到异步包装 (Wrap func with retries; coroutine functions get an async wrapper)"""
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def retrying_coroutine(*args: Any, **kwargs: Any) -> Any:
                return await self.execute_async(func, *args, **kwargs)
            return retrying_coroutine

        @functools.wraps(func)
        def retrying(*args: Any, **kwargs: Any) -> T:
            return self.execute(func, *args, **kwargs)
        return retrying


class ExponentialBackoff(RetryStrategy):
    """
    指数退避：initial_delay * backoff_factor^(n-1)，上限 max_delay。

    Exponential backoff: initial_delay * backoff_factor^(n-1), capped at max_delay.
    """

    def __init__(self,
                 max_retries: int = 3,
                 initial_delay: float = 1.0,
                 max_delay: float = 60.0,
                 backoff_factor: float = 2.0,
                 retry_exceptions: ExceptionTypes = Exception,
                 on_retry: Optional[RetryCallback] = None):
        super().__init__(max_retries, retry_exceptions, on_retry)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor

    def get_delay(self, attempt: int) -> float:
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


class ExponentialBackoffWithJitter(ExponentialBackoff):
    """
    在指数退避上叠加 ±jitter_factor 比例的随机抖动，让并发会话错开重试时间。

    Exponential backoff plus a random ±jitter_factor share, so concurrent sessions spread their retries.
    """

    def __init__(self,
                 max_retries: int = 3,
                 initial_delay: float = 1.0,
                 max_delay: float = 60.0,
                 backoff_factor: float = 2.0,
                 jitter_factor: float = 0.1,
                 retry_exceptions: ExceptionTypes = Exception,
                 on_retry: Optional[RetryCallback] = None,
                 rng: Optional[random.Random] = None):
        super().__init__(max_retries, initial_delay, max_delay, backoff_factor, retry_exceptions, on_retry)
        self.jitter_factor = jitter_factor
        self.rng = rng or random.Random()

    def get_delay(self, attempt: int) -> float:
        base = super().get_delay(attempt)
        spread = base * self.jitter_factor
        return max(0.0, base + self.rng.uniform(-spread, spread))
