"""Subtask ordering inside a parent task.

Every operation here works on the in-memory ParentTask aggregate only. The
store loads the aggregate, calls one of these functions, checks
``is_valid_sequence`` and then renames/rewrites the affected files.

Sequence numbers are two-digit strings from 01 to 99 (00 is the overview).
Subtasks that share a number form a parallel group.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from taskcraft.errors import ValidationError
from taskcraft.task_layout import parse_subtask_filename
from taskcraft.task_model import ParentTask, SubtaskRef, format_sequence

logger = logging.getLogger(__name__)

MIN_SEQUENCE = 1
MAX_SEQUENCE = 99


def _check_range(number: int) -> str:
    if not MIN_SEQUENCE <= number <= MAX_SEQUENCE:
        raise ValidationError(
            f"Sequence number {number} is out of range ({MIN_SEQUENCE:02d}-{MAX_SEQUENCE:02d})",
            field="sequence",
        )
    return f"{number:02d}"


def get_next_sequence_number(parent: ParentTask) -> str:
    """One past the highest sequence in use; "01" for an empty parent.

    Raises:
        ValidationError: If the parent already uses 99
    """
    highest = max((ref.number for ref in parent.subtasks), default=0)
    return _check_range(highest + 1)


def make_tasks_parallel(
    parent: ParentTask, task_ids: Iterable[str], target_sequence: str | None = None
) -> list[str]:
    """Give every listed subtask the same sequence number.

    The shared number is the lowest one among the listed subtasks unless
    ``target_sequence`` is given. Unlisted subtasks keep their numbers.

    Returns:
        IDs whose sequence changed

    Raises:
        ValidationError: Fewer than two IDs, or a bad target sequence
        NotFoundError: An ID is not a subtask of this parent
    """
    ids = list(dict.fromkeys(task_ids))
    if len(ids) < 2:
        raise ValidationError(
            "At least 2 tasks are required to make them parallel", field="task_ids"
        )

    refs = [parent.require(task_id) for task_id in ids]
    if target_sequence is not None:
        sequence = _check_range(int(format_sequence(target_sequence)))
    else:
        sequence = f"{min(ref.number for ref in refs):02d}"

    changed = []
    for ref in refs:
        if ref.sequence != sequence:
            ref.sequence = sequence
            changed.append(ref.task_id)
    parent.sort()
    return changed


def insert_task_after(parent: ParentTask, after_id: str, new_id: str) -> list[str]:
    """Place ``new_id`` directly after the group that ``after_id`` belongs to.

    The new task gets its own group (anchor + 1); it does not join the
    anchor's parallel group. Every later group moves up by one and stays
    intact. ``new_id`` may already be a subtask (it is moved) or be new to
    the parent (a reference without a path is added).

    Returns:
        IDs whose sequence changed, including ``new_id``

    Raises:
        ValidationError: If new_id is after_id, or the shift would pass 99
        NotFoundError: If after_id is not a subtask of this parent
    """
    if new_id == after_id:
        raise ValidationError("A task cannot be inserted after itself", field="task_id")

    anchor = parent.require(after_id).number
    moving = parent.find(new_id)
    later = [ref for ref in parent.subtasks if ref.number > anchor and ref is not moving]
    if later:
        _check_range(max(ref.number for ref in later) + 1)
    new_sequence = _check_range(anchor + 1)

    if moving is not None:
        parent.subtasks.remove(moving)
    else:
        moving = SubtaskRef(sequence="00", task_id=new_id)

    changed = []
    for ref in later:
        ref.sequence = f"{ref.number + 1:02d}"
        changed.append(ref.task_id)

    if moving.sequence != new_sequence:
        moving.sequence = new_sequence
        changed.append(new_id)
    parent.subtasks.append(moving)
    parent.sort()
    return changed


def reorder_subtasks(parent: ParentTask, sequence_map: Mapping[str, str | int]) -> list[str]:
    """Assign explicit sequence numbers; unlisted subtasks keep theirs.

    Returns:
        IDs whose sequence changed

    Raises:
        ValidationError: A number outside 01-99
        NotFoundError: An ID is not a subtask of this parent
    """
    updates = {
        task_id: _check_range(int(format_sequence(value)))
        for task_id, value in sequence_map.items()
    }
    changed = []
    for task_id, sequence in updates.items():
        ref = parent.require(task_id)
        if ref.sequence != sequence:
            ref.sequence = sequence
            changed.append(task_id)
    parent.sort()
    return changed


def sequence_problems(parent: ParentTask, check_files: bool = True) -> list[str]:
    """Everything wrong with a parent's ordering (empty if valid).

    Checks, in filename order: numbers in range and non-decreasing, and each
    file's name prefix equal to the sequence recorded for it. With
    ``check_files`` off, only the in-memory sequences are checked.
    """

    def order_key(ref: SubtaskRef) -> str:
        if check_files and ref.path is not None:
            return ref.path.name
        return f"{ref.sequence}_{ref.task_id}"

    problems = []
    ordered = sorted(parent.subtasks, key=order_key)
    previous = 0
    for ref in ordered:
        try:
            number = int(ref.sequence)
        except ValueError:
            problems.append(f"{ref.task_id}: sequence {ref.sequence!r} is not a number")
            continue
        if not MIN_SEQUENCE <= number <= MAX_SEQUENCE:
            problems.append(f"{ref.task_id}: sequence {ref.sequence} is out of range")
        if number < previous:
            problems.append(f"{ref.task_id}: sequence {ref.sequence} follows {previous:02d}")
        previous = max(previous, number)
        if check_files and ref.path is not None:
            parsed = parse_subtask_filename(ref.path.name)
            if parsed is None or parsed[0] != ref.sequence:
                problems.append(
                    f"{ref.task_id}: file {ref.path.name} does not match sequence {ref.sequence}"
                )
    return problems


def is_valid_sequence(parent: ParentTask) -> bool:
    return not sequence_problems(parent)
