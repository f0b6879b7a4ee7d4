"""Error types raised by the experiment engine."""

from typing import Any, Callable, Optional


class InvalidArgument(ValueError):
    """Malformed input to an assignment or statistics function."""


class InvalidEvent(InvalidArgument):
    """Ledger write rejected before persistence."""


class SubscriberFailure(Exception):
    """A subscriber handler raised while an event was being delivered.

    Never raised to the writer; built at the delivery boundary, logged, and
    handed to the ledger's optional error handler.
    """

    def __init__(
        self,
        test_id: str,
        event: Any,
        handler: Callable,
        original: BaseException,
    ):
        self.test_id = test_id
        self.event = event
        self.handler = handler
        self.original: Optional[BaseException] = original
        name = getattr(handler, "__qualname__", repr(handler))
        super().__init__(
            f"Subscriber {name} failed for test {test_id}: {original!r}"
        )
