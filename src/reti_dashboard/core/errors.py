"""Error taxonomy surfaced to callers of the engine."""


class RetiError(Exception):
    """Base class for all engine errors."""


class RemoteUnavailable(RetiError):
    """Transport-level failure talking to the node or the name service."""


class NotFound(RetiError):
    """Entity absent on the remote side (asset, holding, name record...)."""

    def __init__(self, message: str, status_code: int = 404):
        super().__init__(message)
        self.status_code = status_code


class ValidatorNotFound(NotFound):
    """One or more of the four core validator reads failed or came back empty."""

    def __init__(self, validator_id: int):
        super().__init__(f'Validator with id "{validator_id}" not found!')
        self.validator_id = validator_id


class SimulationFailed(RetiError):
    """The dry-run group reported a failure message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.failure_message = message


class InsufficientBalance(RetiError):
    """Spendable balance is lower than what an operation group needs."""

    def __init__(self, required: int, available: int, label: str):
        self.required = required
        self.available = available
        self.label = label
        super().__init__(
            f"{label}: insufficient balance, {required} required, "
            f"{available} available (short {self.shortfall})"
        )

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class AggregationInconsistency(RetiError):
    """A composed view would have been published with missing fields."""


class FeeAccountingError(RetiError):
    """Derived extra fee came out negative: the padding credit is wrong."""


class UnreadableReturn(RetiError):
    """
    The group was committed but its method return could not be read.

    The transactions landed; ``send_result`` and ``tx_ids`` identify them so
    the caller does not resubmit.
    """

    def __init__(self, label: str, send_result, reason: str):
        self.label = label
        self.send_result = send_result
        self.tx_ids = list(send_result.tx_ids)
        super().__init__(
            f"{label}: committed in {', '.join(self.tx_ids) or 'unknown transactions'} "
            f"but {reason}"
        )
