class InvalidArgumentError(ValueError):
    """Raised when a domain factory is given input it cannot accept."""


class EmptyUrlError(InvalidArgumentError):
    pass


class MalformedUrlError(InvalidArgumentError):
    pass


class IllegalTransitionError(Exception):
    def __init__(self, current, requested) -> None:
        super().__init__(f"Illegal job transition {current.name} -> {requested.name}")
        self.current = current
        self.requested = requested
