# -*- coding: utf-8 -*-
# errors.py - Exception taxonomy for the order bot

class OrderBotError(Exception):
    """Base class for errors that are reported back to the chat instead of crashing."""

    # Short text shown to the user who triggered the failing action
    user_message = "Something went wrong"

    def __init__(self, message: str = None):
        super().__init__(message or self.user_message)
        if message:
            self.user_message = message


class RecordNotFound(OrderBotError):
    """Button pressed on a stage that was already resolved (stale or duplicate press)."""

    user_message = "Record not found"

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind.capitalize()} record not found")


class InvalidTransition(OrderBotError):
    """Action is not valid from the record's current stage."""

    def __init__(self, stage, action):
        self.stage = stage
        self.action = action
        super().__init__(f"Cannot {action.value} from {stage.value}")


class InvalidPayload(OrderBotError):
    """Admin sent catalog JSON/CSV that cannot be saved."""

    user_message = "Invalid payload"


class ExternalCallFailure(OrderBotError):
    """Telegram API call failed; state of the current stage is left untouched."""

    user_message = "Telegram request failed"

    def __init__(self, operation: str, error: Exception, description: str = None):
        self.operation = operation
        self.error = error
        super().__init__(f"{operation} failed: {description or error}")


class ConfigError(OrderBotError):
    """Required startup configuration is missing."""
