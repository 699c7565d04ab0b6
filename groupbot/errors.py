"""Exception types raised across groupbot."""


class GroupbotError(Exception):
    """Base class for groupbot errors."""


class ConfigError(GroupbotError):
    """Configuration could not be loaded or validated."""


class PersistenceError(GroupbotError):
    """The memory snapshot could not be written."""


class LLMError(GroupbotError):
    """The language-model provider failed to produce a response."""


class DeliveryError(GroupbotError):
    """A reply could not be delivered to the chat."""
