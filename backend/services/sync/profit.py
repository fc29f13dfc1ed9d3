"""Competition ranking metric. No rounding here; display code formats."""


def profit_amount(balance: float, start_balance: float) -> float:
    return balance - start_balance


def profit_percentage(balance: float, start_balance: float) -> float:
    if start_balance == 0:
        return 0.0
    return (balance - start_balance) / start_balance * 100
