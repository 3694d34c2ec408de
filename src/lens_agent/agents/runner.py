"""Agent stage runner.

Runs one role against a model invoker: prompt construction, per-attempt
timeout with cooperative cancellation of the in-flight call, bounded retries
with exponential backoff on transient failures, payload validation and
post-processing.  Stage failures are returned as ``AgentResult`` objects and
never raised.
"""

import asyncio
import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from lens_agent.agents.roles import get_role_spec
from lens_agent.agents.stage import ModelInvoker, StageInput, StagePrompt
from lens_agent.errors import StageCancelled, TransientFailure, ValidationFailure
from lens_agent.models import AgentResult, FailureKind, Role

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientFailure,
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


class AttemptExpired(TimeoutError):
    """The runner's own per-attempt wait ran out.

    Distinct from a TimeoutError raised by the invoker, which is transient.
    """


def remaining_seconds(deadline: float | None) -> float | None:
    """Seconds left until a ``time.monotonic()`` deadline, or None."""
    if deadline is None:
        return None
    return deadline - time.monotonic()


def _is_cancelled(cancel_event: asyncio.Event | None, deadline: float | None) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    left = remaining_seconds(deadline)
    return left is not None and left <= 0


async def invoke_with_timeout(
    invoke: ModelInvoker,
    role: Role,
    prompt: StagePrompt,
    timeout: float,
    cancel_event: asyncio.Event | None = None,
) -> Any:
    """Await one model call; cancel it on timeout or when cancel_event fires.

    Raises:
        AttemptExpired: the call did not finish within ``timeout`` seconds
        StageCancelled: cancel_event was set first
    """
    call = asyncio.ensure_future(invoke(role, prompt))
    waiters: set[asyncio.Future[Any]] = {call}
    cancel_waiter: asyncio.Future[Any] | None = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        call.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if call in done:
        return call.result()

    call.cancel()
    await asyncio.gather(call, return_exceptions=True)
    if cancel_waiter is not None and cancel_waiter in done:
        raise StageCancelled("cancelled")
    raise AttemptExpired(f"{role} call exceeded {timeout:.1f}s")


async def _sleep_unless_cancelled(
    delay: float,
    cancel_event: asyncio.Event | None,
    deadline: float | None,
) -> bool:
    """Backoff sleep. Returns True when the run was cancelled meanwhile."""
    left = remaining_seconds(deadline)
    if left is not None and left <= delay:
        return True
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except TimeoutError:
        return False
    return True


def _coerce_payload(raw: Any) -> Any:
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    return raw


def _failure(
    role: Role,
    kind: FailureKind,
    error: str,
    started: float,
    attempts: int,
) -> AgentResult:
    duration_ms = (time.perf_counter() - started) * 1000
    logger.warning(f"[{role}] stage failed ({kind}) after {attempts} attempt(s): {error}")
    return AgentResult(
        role=role,
        success=False,
        error=error,
        failure_kind=kind,
        duration_ms=duration_ms,
        attempts=attempts,
    )


async def run_stage(
    role: Role,
    stage_input: StageInput,
    invoke: ModelInvoker,
    *,
    timeout: float,
    max_retries: int,
    backoff_seconds: float,
    deadline: float | None = None,
    cancel_event: asyncio.Event | None = None,
) -> AgentResult:
    """Run one role to completion or recorded failure.

    Args:
        role: Pipeline role to run
        stage_input: Context, level, options and upstream payloads
        invoke: Model invoker for this role
        timeout: Per-attempt timeout in seconds
        max_retries: Retries after the first attempt for transient failures
        backoff_seconds: Base delay; retry n waits backoff_seconds * 2**(n-1)
        deadline: Absolute ``time.monotonic()`` deadline of the whole pipeline
        cancel_event: Set by the caller to abort the run

    Returns:
        AgentResult with the validated payload, or success=False with
        error "timeout", "cancelled" or the failure message.
    """
    spec = get_role_spec(role)
    started = time.perf_counter()

    try:
        prompt = spec.build_prompt(stage_input)
    except ValidationFailure as e:
        return _failure(role, "validation", str(e), started, 0)

    attempt = 0
    while True:
        if _is_cancelled(cancel_event, deadline):
            return _failure(role, "cancelled", "cancelled", started, attempt)

        attempt += 1
        left = remaining_seconds(deadline)
        attempt_timeout = timeout if left is None else min(timeout, left)
        logger.info(f"[{role}] attempt {attempt}/{max_retries + 1} (timeout {attempt_timeout:.1f}s)")

        try:
            raw = await invoke_with_timeout(invoke, role, prompt, attempt_timeout, cancel_event)
            payload = spec.output_model.model_validate(_coerce_payload(raw))
            payload = spec.postprocess(payload, stage_input)
        except StageCancelled:
            return _failure(role, "cancelled", "cancelled", started, attempt)
        except AttemptExpired:
            if left is not None and left <= timeout:
                # The wait was capped by the pipeline deadline, which has now passed.
                return _failure(role, "cancelled", "cancelled", started, attempt)
            kind: FailureKind = "timeout"
            error = "timeout"
        except (ValidationFailure, ValidationError) as e:
            return _failure(role, "validation", str(e), started, attempt)
        except TRANSIENT_ERRORS as e:
            kind = "transient"
            error = str(e) or type(e).__name__
        except Exception as e:
            logger.exception(f"[{role}] unexpected error from model invoker")
            return _failure(role, "error", f"{type(e).__name__}: {e}", started, attempt)
        else:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(f"[{role}] stage succeeded in {duration_ms:.0f}ms ({attempt} attempt(s))")
            return AgentResult(
                role=role,
                success=True,
                payload=payload,
                duration_ms=duration_ms,
                attempts=attempt,
            )

        if attempt > max_retries:
            return _failure(role, kind, error, started, attempt)

        delay = backoff_seconds * 2 ** (attempt - 1)
        logger.warning(f"[{role}] {kind} failure ({error}); retrying in {delay:.1f}s")
        if await _sleep_unless_cancelled(delay, cancel_event, deadline):
            return _failure(role, "cancelled", "cancelled", started, attempt)
