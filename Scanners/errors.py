class NotAPEFileError(ValueError):
    """Raised when input bytes cannot be parsed as a PE image."""


class EnsembleError(RuntimeError):
    """Raised when the model ensemble cannot be loaded or used."""
