"""Domain exceptions."""


class InferenceError(Exception):
    """An inference/generation/review dependency timed out, failed, or returned garbage."""
    pass


class PersistenceError(Exception):
    """A write or read against the persistence collaborator failed."""
    pass


class UnknownRecordError(Exception):
    """A referenced child or session does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id
