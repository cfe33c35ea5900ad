"""
Task lifecycle states and their translation to Mesos task states.

SPILLED / NOT_SPILLED are runtime observations reported while a task runs;
they are inputs for later memory-budget estimates, not terminal states.
"""

from enum import Enum


class TaskState(str, Enum):
    LAUNCHING = "launching"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    KILLED = "killed"
    LOST = "lost"
    SPILLED = "spilled"
    NOT_SPILLED = "not_spilled"


class MesosTaskState(str, Enum):
    TASK_STAGING = "TASK_STAGING"
    TASK_STARTING = "TASK_STARTING"
    TASK_RUNNING = "TASK_RUNNING"
    TASK_FINISHED = "TASK_FINISHED"
    TASK_FAILED = "TASK_FAILED"
    TASK_KILLED = "TASK_KILLED"
    TASK_LOST = "TASK_LOST"
    TASK_ERROR = "TASK_ERROR"


RUN_STATES = frozenset({TaskState.RUNNING})
FINISHED_STATES = frozenset({TaskState.FINISHED, TaskState.FAILED, TaskState.KILLED, TaskState.LOST})
FAILED_STATES = frozenset({TaskState.FAILED, TaskState.LOST})
SPILLED_STATES = frozenset({TaskState.SPILLED})

TO_MESOS: dict[TaskState, MesosTaskState] = {
    TaskState.LAUNCHING: MesosTaskState.TASK_STARTING,
    TaskState.RUNNING: MesosTaskState.TASK_RUNNING,
    TaskState.FINISHED: MesosTaskState.TASK_FINISHED,
    TaskState.FAILED: MesosTaskState.TASK_FAILED,
    TaskState.KILLED: MesosTaskState.TASK_KILLED,
    TaskState.LOST: MesosTaskState.TASK_LOST,
    TaskState.SPILLED: MesosTaskState.TASK_RUNNING,
    TaskState.NOT_SPILLED: MesosTaskState.TASK_RUNNING,
}

FROM_MESOS: dict[MesosTaskState, TaskState] = {
    MesosTaskState.TASK_STAGING: TaskState.LAUNCHING,
    MesosTaskState.TASK_STARTING: TaskState.LAUNCHING,
    MesosTaskState.TASK_RUNNING: TaskState.RUNNING,
    MesosTaskState.TASK_FINISHED: TaskState.FINISHED,
    MesosTaskState.TASK_FAILED: TaskState.FAILED,
    MesosTaskState.TASK_KILLED: TaskState.KILLED,
    MesosTaskState.TASK_LOST: TaskState.LOST,
    MesosTaskState.TASK_ERROR: TaskState.LOST,
}


def is_running(state: TaskState) -> bool:
    return state in RUN_STATES


def is_finished(state: TaskState) -> bool:
    """True for every terminal state, successful or not."""
    return state in FINISHED_STATES


def is_failed(state: TaskState) -> bool:
    return state in FAILED_STATES


def is_spilled(state: TaskState) -> bool:
    return state in SPILLED_STATES


def to_mesos(state: TaskState) -> MesosTaskState:
    return TO_MESOS[TaskState(state)]


def from_mesos(state: MesosTaskState) -> TaskState:
    return FROM_MESOS[MesosTaskState(state)]
