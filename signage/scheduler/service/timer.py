"""Timer management for the scheduler.

Holds at most one pending wake-up timer, bound to the next instant at which
the active entry can change. Every wake-up (timer, safety net, mutation or
explicit poll) re-resolves the timeline from ``now`` instead of trusting the
instant it was armed for, so late timers and stalled processes self-correct.

Functions that touch timer state expect the caller to hold ``state.lock``,
except the task bodies, which acquire it themselves.
"""
import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from ..errors import ResolutionInconsistency, TimerArmFailure
from ..resolver import resolve
from ..types import TimelineChange, TransitionEvent
from .events import emit_entry_event, EventTypes

if TYPE_CHECKING:
    from .service import SchedulerService

logger = logger.bind(module="scheduler.timer")


def current_instant(service: "SchedulerService") -> int:
    """Instant to resolve at; never earlier than the previous resolution."""
    state = service.state
    now = max(service.deps.clock.now_ms(), state.last_resolved_at_ms)
    state.last_resolved_at_ms = now
    return now


def publish_if_changed(service: "SchedulerService", instant_ms: int) -> TransitionEvent | None:
    """Resolve ``instant_ms`` and publish a transition if the active id moved."""
    state = service.state
    resolution = resolve(service.store, instant_ms)
    if resolution.active_id == state.last_published_id:
        return None

    event = TransitionEvent(
        instant_ms=instant_ms,
        active=resolution.active,
        previous_id=state.last_published_id,
    )
    state.last_published_id = resolution.active_id
    service.broadcaster.publish(event)
    emit_entry_event(
        service.events,
        EventTypes.TRANSITION,
        resolution.active_id or "",
        {"instant_ms": instant_ms, "previous_id": event.previous_id},
    )
    logger.info(f"Transition at {instant_ms}: {event.previous_id} -> {resolution.active_id}")
    return event


def arm_timer(service: "SchedulerService", wake_at_ms: int | None) -> bool:
    """Bind the single wake-up timer to ``wake_at_ms``.

    Cancels a timer armed for a different instant before arming the new one;
    arming the instant that is already armed is a no-op. There is no await
    between cancel and arm, so no other coroutine can observe two timers or
    none in between.

    Returns:
        True if a new timer was created (or the old one cleared)

    Raises:
        TimerArmFailure: if the timer task could not be created
    """
    state = service.state
    current = state.timer_task
    this_task = asyncio.current_task()
    alive = current is not None and not current.done() and current is not this_task

    if alive and wake_at_ms is not None and wake_at_ms == state.armed_at_ms:
        return False

    if alive:
        current.cancel()
        logger.debug(f"Cancelled timer for {state.armed_at_ms}")
    state.timer_task = None
    state.armed_at_ms = None

    if wake_at_ms is None:
        logger.debug("No future entries, timer not armed")
        return True

    factory = service.deps.task_factory or asyncio.create_task
    coro = _wait_and_fire(service, wake_at_ms)
    try:
        task = factory(coro)
    except Exception as e:
        coro.close()
        state.arm_failures += 1
        raise TimerArmFailure(wake_at_ms, str(e)) from e

    state.timer_task = task
    state.armed_at_ms = wake_at_ms
    state.arm_failures = 0
    emit_entry_event(service.events, EventTypes.TIMER_ARMED, "", {"wake_at_ms": wake_at_ms})
    logger.debug(f"Timer armed for {wake_at_ms}")
    return True


def reconcile(service: "SchedulerService") -> TransitionEvent | None:
    """Resolve ``now``, publish if needed and re-arm for the next boundary.

    A failed arm is recorded in ``state.rearm_pending`` rather than dropped;
    callers follow up with :func:`rearm_with_backoff`.
    """
    state = service.state
    now = current_instant(service)
    event = publish_if_changed(service, now)
    next_wake = service.store.next_instant_after(now)
    try:
        arm_timer(service, next_wake)
        state.rearm_pending = False
    except TimerArmFailure as e:
        state.rearm_pending = True
        logger.warning(f"{e} (attempt {state.arm_failures})")
        emit_entry_event(
            service.events,
            EventTypes.TIMER_ARM_FAILED,
            "",
            {"wake_at_ms": e.wake_at_ms, "error": e.reason},
        )
    return event


async def rearm_with_backoff(service: "SchedulerService") -> bool:
    """Retry a failed arm with exponential backoff.

    The lock is released while sleeping so mutations keep flowing. After the
    last attempt ``rearm_pending`` stays set and the safety net takes over.

    Returns:
        True once a timer is armed (or no longer needed)
    """
    state = service.state
    policy = service.policy

    for attempt in range(policy.retry_attempts):
        if not state.rearm_pending or not state.running:
            return True
        delay = policy.backoff(attempt)
        logger.warning(f"Retrying timer arm in {delay:.2f}s (retry {attempt + 1}/{policy.retry_attempts})")
        await asyncio.sleep(delay)
        async with state.lock:
            if not state.running:
                return True
            reconcile(service)

    if state.rearm_pending:
        logger.error(
            f"Timer still not armed after {policy.retry_attempts} retries; "
            "safety net will keep retrying"
        )
        return False
    return True


def affects_near_term(service: "SchedulerService", change: TimelineChange) -> bool:
    """Whether ``change`` can move the active entry or the next wake instant.

    A change whose whole instant range lies after both ``now`` and the armed
    instant cannot do either.
    """
    state = service.state
    if change.is_bulk or state.rearm_pending:
        return True
    earliest = change.earliest_at_ms
    if earliest is None:
        return True
    if earliest <= service.deps.clock.now_ms():
        return True
    if state.armed_at_ms is None:
        return True
    return earliest <= state.armed_at_ms


def on_timeline_change(service: "SchedulerService", change: TimelineChange) -> None:
    """Store listener: forward the change to viewers, then re-plan if needed."""
    service.broadcaster.publish(change)
    if not service.state.running:
        return
    if not affects_near_term(service, change):
        logger.debug(
            f"Change to {change.entry_id} beyond armed instant {service.state.armed_at_ms}, "
            "timer kept"
        )
        return
    reconcile(service)


async def _wait_and_fire(service: "SchedulerService", wake_at_ms: int) -> None:
    """Body of the wake-up timer task."""
    clock = service.deps.clock
    state = service.state

    try:
        # The clock may wake us early; keep sleeping until the instant is reached
        while clock.now_ms() < wake_at_ms:
            await clock.sleep_until(wake_at_ms)

        async with state.lock:
            if state.timer_task is not asyncio.current_task() or not state.running:
                return
            emit_entry_event(service.events, EventTypes.TIMER_FIRED, "", {"wake_at_ms": wake_at_ms})
            logger.debug(f"Timer fired for {wake_at_ms}")
            reconcile(service)
    except ResolutionInconsistency as e:
        fail_timeline(service, e)
        raise

    if state.rearm_pending:
        await rearm_with_backoff(service)


async def safety_net_loop(service: "SchedulerService") -> None:
    """Coarse periodic re-resolution, independent of the wake-up timer.

    Catches missed wake-ups, timers that died, and arms that failed after all
    retries. Also verifies the store's index on every pass.
    """
    clock = service.deps.clock
    state = service.state
    interval = service.policy.safety_net_interval_ms
    logger.info(f"Safety net started (every {interval} ms)")

    while state.running:
        try:
            await clock.sleep_until(clock.now_ms() + interval)

            async with state.lock:
                if not state.running:
                    break
                service.store.check_consistency()
                timer = state.timer_task
                if state.armed_at_ms is not None and (timer is None or timer.done()):
                    logger.warning(f"Timer for {state.armed_at_ms} is gone, re-arming")
                if reconcile(service):
                    logger.warning("Safety net published a transition the timer missed")

            if state.rearm_pending:
                await rearm_with_backoff(service)

        except asyncio.CancelledError:
            logger.info("Safety net cancelled")
            break
        except ResolutionInconsistency as e:
            fail_timeline(service, e)
            break
        except Exception as e:
            logger.error(f"Safety net error: {e}")
            await asyncio.sleep(1)  # Avoid tight loop on errors

    logger.info("Safety net stopped")


def fail_timeline(service: "SchedulerService", error: ResolutionInconsistency) -> None:
    """Put the timeline in the faulted state; it must be restarted."""
    state = service.state
    logger.critical(f"Timeline corrupted, restart required: {error}")
    state.fault = error
    state.running = False
    timer = state.timer_task
    if timer is not None and not timer.done() and timer is not asyncio.current_task():
        timer.cancel()
    state.timer_task = None
    state.armed_at_ms = None


async def cancel_tasks(service: "SchedulerService") -> None:
    """Cancel the timer and safety-net tasks and wait for them to finish."""
    state = service.state
    for task in (state.timer_task, state.safety_task):
        if task is None or task is asyncio.current_task():
            continue
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except ResolutionInconsistency:
            pass  # already recorded in state.fault
        except Exception as e:
            logger.error(f"Timer task ended with error: {e}")
    state.timer_task = None
    state.armed_at_ms = None
    state.safety_task = None
