"""Survey question catalog."""

from pulse_checkin.questions.catalog import (
    change_question_role,
    create_question,
    get_core_question_by_role,
    get_question,
    get_rotating_question_at_offset,
    list_questions,
    list_rotating_questions,
    parse_role,
    reorder_rotation_queue,
    seed_default_questions,
    set_question_active,
    update_question_text,
    validate_role_change,
)

__all__ = [
    "change_question_role",
    "create_question",
    "get_core_question_by_role",
    "get_question",
    "get_rotating_question_at_offset",
    "list_questions",
    "list_rotating_questions",
    "parse_role",
    "reorder_rotation_queue",
    "seed_default_questions",
    "set_question_active",
    "update_question_text",
    "validate_role_change",
]
