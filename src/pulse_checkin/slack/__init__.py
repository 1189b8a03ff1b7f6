"""Slack delivery and inbound event handling for check-ins."""

from pulse_checkin.slack.messenger import Messenger, SlackMessenger

__all__ = ["Messenger", "SlackMessenger"]
