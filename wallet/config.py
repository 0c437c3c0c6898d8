"""
Wallet configuration.

All settings are loaded from environment variables so the same code runs
locally, in tests and behind the serverless entry point.
"""
import os
from typing import Optional


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return int(value)


def get_float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return float(value)


class WalletSettings:
    """
    Runtime settings for the wallet engine.

    Transaction retry budget mirrors a managed document store: a bounded
    number of attempts with exponential backoff between them.
    """

    def __init__(
        self,
        tx_max_attempts: Optional[int] = None,
        tx_backoff_base: Optional[float] = None,
        tx_backoff_max: Optional[float] = None,
        test_coins_enabled: Optional[bool] = None,
        test_coin_amount: Optional[int] = None,
        history_limit: Optional[int] = None,
        seed_demo_data: Optional[bool] = None,
    ):
        self.tx_max_attempts = tx_max_attempts if tx_max_attempts is not None else get_int_env("WALLET_TX_MAX_ATTEMPTS", 5)
        self.tx_backoff_base = tx_backoff_base if tx_backoff_base is not None else get_float_env("WALLET_TX_BACKOFF_BASE", 0.01)
        self.tx_backoff_max = tx_backoff_max if tx_backoff_max is not None else get_float_env("WALLET_TX_BACKOFF_MAX", 0.5)
        self.test_coins_enabled = test_coins_enabled if test_coins_enabled is not None else get_bool_env("WALLET_TEST_COINS_ENABLED", True)
        self.test_coin_amount = test_coin_amount if test_coin_amount is not None else get_int_env("WALLET_TEST_COIN_AMOUNT", 1000)
        self.history_limit = history_limit if history_limit is not None else get_int_env("WALLET_HISTORY_LIMIT", 20)
        self.seed_demo_data = seed_demo_data if seed_demo_data is not None else get_bool_env("WALLET_SEED_DEMO_DATA", True)

        if self.tx_max_attempts < 1:
            raise ValueError("WALLET_TX_MAX_ATTEMPTS must be at least 1")

    def __repr__(self) -> str:
        return (
            f"WalletSettings(tx_max_attempts={self.tx_max_attempts}, "
            f"tx_backoff_base={self.tx_backoff_base}, tx_backoff_max={self.tx_backoff_max}, "
            f"test_coins_enabled={self.test_coins_enabled}, test_coin_amount={self.test_coin_amount}, "
            f"history_limit={self.history_limit}, seed_demo_data={self.seed_demo_data})"
        )


def load_settings() -> WalletSettings:
    return WalletSettings()
