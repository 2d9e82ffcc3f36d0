from __future__ import annotations

from constructs import IConstruct


class ValidationError(ValueError):
    """Raised when a construct is declared with an illegal combination of properties.

    The construct path of the offending declaration is appended to the message
    when a scope is given, so a failing ``cdk synth`` points at the right node.
    """

    def __init__(self, message: str, scope: IConstruct | None = None) -> None:
        self.message = message
        self.path: str | None = scope.node.path if scope is not None else None
        super().__init__(f"{message} (at {self.path})" if self.path else message)
