"""Errors surfaced at the budgeting boundary."""


class BudgetError(Exception):
    """Base class for budgeting errors."""


class BudgetValidationError(BudgetError, ValueError):
    """Rejected input: missing title, bad date range, bad identifiers."""


class BudgetNotFoundError(BudgetError, LookupError):
    """No budget with the requested id."""

    def __init__(self, budget_id: int) -> None:
        self.budget_id = budget_id
        super().__init__(f"Budget not found: {budget_id}")
