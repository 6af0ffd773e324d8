class NotFoundError(ValueError):
    """Entity is missing or belongs to another company."""


class ScheduleComputationError(ValueError):
    pass


class ReconciliationFailure(RuntimeError):
    def __init__(self, account_id: int, message: str) -> None:
        super().__init__(f"account {account_id}: {message}")
        self.account_id = account_id
