"""Error taxonomy shared by the wizard, the gateway and the image tool."""


class ContentCockpitError(Exception):
    """Base class; ``str(exc)`` is always safe to show to the user."""


class InputValidationError(ContentCockpitError):
    """Required user input (topic, feedback, image prompt) is missing."""


class InvalidTransitionError(ContentCockpitError):
    """The intent is not valid in the current workflow state."""


class WorkflowBusyError(InvalidTransitionError):
    """A generation request is already in flight for this flow."""


class GenerationFailure(ContentCockpitError):
    """A text generation call failed."""


class ImageGenerationFailure(ContentCockpitError):
    """An image generation call failed."""
