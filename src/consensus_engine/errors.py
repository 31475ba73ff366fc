class ConsensusEngineError(Exception):
    """Base class for every failure raised inside the consensus engine."""


class DataUnavailable(ConsensusEngineError):
    """A provider chain or signal engine produced no usable value."""


class MalformedSignal(DataUnavailable):
    """An engine returned something that is not a finite number."""


class WeightStoreContention(ConsensusEngineError):
    """A concurrent writer changed a weight row between read and write."""

    def __init__(self, signal_name: str):
        super().__init__(f"Concurrent update detected for signal '{signal_name}'")
        self.signal_name = signal_name


class LedgerIntegrityViolation(ConsensusEngineError):
    """An outcome was attached to a prediction that already has one."""

    def __init__(self, prediction_id: int, existing_outcome: str):
        super().__init__(
            f"Prediction {prediction_id} already closed as {existing_outcome}; refusing to overwrite"
        )
        self.prediction_id = prediction_id
        self.existing_outcome = existing_outcome


class PredictionNotFound(ConsensusEngineError):
    def __init__(self, prediction_id: int):
        super().__init__(f"Prediction {prediction_id} does not exist")
        self.prediction_id = prediction_id
