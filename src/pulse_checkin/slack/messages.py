"""Block Kit builders for check-in messages."""

from pulse_checkin.db.models import QuestionRole

RATING_CHOICES = ("1", "2", "3", "4", "5")
FALLBACK_ROTATING_QUESTION = "What can we do to support you better?"


def build_question_blocks(
    role: QuestionRole,
    text: str,
    number: int | None = None,
    choices: tuple[str, ...] | list[str] | None = None,
    preface: str | None = None,
) -> list[dict]:
    """Build the blocks for one survey question.

    The rating question (choices given) is rendered with one button per choice;
    free-text questions ask the user to reply in the DM.
    """
    blocks: list[dict] = []
    if number == 1:
        blocks.extend(
            [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "Weekly Pulse Check-in", "emoji": True},
                },
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "Hey there! It's time for your weekly check-in. "
                        "This should only take a couple of minutes.",
                    },
                },
                {"type": "divider"},
            ]
        )
    elif preface:
        blocks.extend(
            [
                {"type": "section", "text": {"type": "mrkdwn", "text": preface}},
                {"type": "divider"},
            ]
        )

    label = f"*Question {number}:* " if number else ""
    question_text = f"{label}{text}"
    if role == QuestionRole.RATING:
        question_text += "\n\n_(1 = Terrible, 5 = Excellent)_"
    blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": question_text}})

    if choices:
        blocks.append(
            {
                "type": "actions",
                "block_id": f"{role.value}_choices",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": choice},
                        "value": choice,
                        "action_id": f"{role.value}_{choice}",
                    }
                    for choice in choices
                ],
            }
        )
    else:
        blocks.append(
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "_Please type your answer below..._"}],
            }
        )
    return blocks


def build_reminder_blocks(kind: str) -> tuple[str, list[dict]]:
    """Build (fallback text, blocks) for a reminder."""
    if kind == "final":
        text = "Final reminder: Your weekly check-in is due today!"
        body = (
            "*Final Reminder*\n\nYour weekly pulse check-in is due today! "
            "It only takes 2 minutes.\n\nPlease complete it when you get a chance."
        )
    else:
        text = "Friendly reminder: Your weekly check-in is waiting!"
        body = (
            "*Friendly Reminder*\n\nJust a quick reminder to complete your weekly "
            "pulse check-in if you haven't already!\n\nIt only takes a couple of minutes."
        )
    return text, [{"type": "section", "text": {"type": "mrkdwn", "text": body}}]


def build_plain_blocks(text: str) -> list[dict]:
    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


def quote_answer(text: str, limit: int = 50) -> str:
    """Short echo of a free-text answer."""
    snippet = text[:limit] + ("..." if len(text) > limit else "")
    return f'Got it! "{snippet}"'
