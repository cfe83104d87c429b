"""Job lifecycle finite state machine.

Each server-side job gets its own FSM instance. The coordinator drives the
transitions; an illegal transition raises
``statemachine.exceptions.TransitionNotAllowed``.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class JobLifecycleSM(StateMachine):
    """Seven-state lifecycle of a job from creation to completion.

    States:
        idle           -- Nothing requested yet.
        creating       -- Job-creation request in flight.
        created        -- Job exists; files point at its ingest endpoint.
        awaiting_event -- Status channel open, waiting for the terminal event.
        satisfied      -- The awaited terminal event arrived.
        failed         -- Job creation failed.
        channel_error  -- The status channel reported an error.

    The three end states are ``final=True``; none has outgoing transitions.
    """

    idle = State("idle", initial=True, value="idle")
    creating = State("creating", value="creating")
    created = State("created", value="created")
    awaiting_event = State("awaiting_event", value="awaiting_event")
    satisfied = State("satisfied", final=True, value="satisfied")
    failed = State("failed", final=True, value="failed")
    channel_error = State("channel_error", final=True, value="channel_error")

    start_create = idle.to(creating)
    complete_create = creating.to(created)
    fail_create = creating.to(failed)
    begin_wait = created.to(awaiting_event)
    observe = awaiting_event.to.itself()
    satisfy = awaiting_event.to(satisfied)
    fail_channel = awaiting_event.to(channel_error)


def create_job_fsm(current_state: str = "idle") -> JobLifecycleSM:
    """Create an FSM instance at the given state.

    Args:
        current_state: One of the state values of :class:`JobLifecycleSM`.

    Returns:
        A JobLifecycleSM positioned at *current_state*.
    """
    return JobLifecycleSM(start_value=current_state)
