"""
Receiver Funding - Native currency needed before an inbox deposit can be claimed.

All amounts are in microAlgos.
"""

BASE_MIN_BALANCE = 100_000
ASSET_MIN_BALANCE = 100_000
TRANSACTION_FEE = 1_000
SAFETY_BUFFER = 3_000

# Account minimum + one asset holding + opt-in and claim fees + buffer
FUNDING_THRESHOLD = BASE_MIN_BALANCE + ASSET_MIN_BALANCE + 2 * TRANSACTION_FEE + SAFETY_BUFFER


def compute_funding_amount(current_balance: int, threshold: int = FUNDING_THRESHOLD) -> int:
    """
    Amount to send so the receiver reaches threshold in one top-up.

    Returns 0 when the receiver already holds at least threshold.
    """
    if current_balance < 0:
        raise ValueError(f"Balance cannot be negative: {current_balance}")
    return max(threshold - current_balance, 0)
