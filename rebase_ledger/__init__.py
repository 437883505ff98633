"""
rebase_ledger - Interest-Accruing Balance Ledger

Each account locks in a per-second rate when it is funded, copied from a
global rate that can only go down. Bridges move value between independent
ledger instances and carry the sender's rate with it.

Usage:
    from datetime import timedelta
    from rebase_ledger import Ledger, RateAuthority, BridgeAdapter, MessageChannel

    authority = RateAuthority("admin", initial_rate=5 * 10**10)
    source = Ledger("source", authority)
    source.fund("alice", 1000)

    source.advance_time(source.current_time + timedelta(hours=1))
    print(source.query("alice"))            # principal plus accrued interest

    source.transfer("alice", "bob", 500)     # bob inherits alice's rate
"""

# Core types
from .core import (
    LedgerView,
    AccountState,
    AccountChange,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    build_transaction,
    empty_pending_transaction,
    LedgerError,
    ArithmeticOverflow,
    InsufficientBalance,
    RateMustDecrease,
    Unauthorized,
    RateLimitExceeded,
    ExternalTransferFailed,
    SCALE,
    MAX_UINT,
    MAX_AMOUNT,
    DEFAULT_INITIAL_RATE,
    MINT_AND_BURN_ROLE,
    EMPTY_ACCOUNT,
)

# Rate authority
from .rate_authority import RateAuthority, RateChange

# Accrual rules
from .accrual import (
    elapsed_seconds,
    calculate_interest_factor,
    calculate_balance,
    calculate_settlement,
    computed_balance,
    query,
    resolve_amount,
    compute_settle,
    compute_credit,
    compute_fund,
    compute_withdraw,
)

# Transfers
from .transfer import compute_transfer

# Ledger
from .ledger import Ledger

# Bridge
from .bridge import (
    BridgeMessage,
    BridgeAdapter,
    compute_bridge_burn,
    compute_bridge_mint,
)

# Transport
from .transport import (
    RateLimiterConfig,
    TokenBucket,
    MessageChannel,
    DISABLED_LIMITER,
)

# Vault
from .vault import Vault


__all__ = [
    # Core
    'LedgerView',
    'AccountState',
    'AccountChange',
    'Transaction',
    'PendingTransaction',
    'TransactionOrigin',
    'OriginType',
    'ExecuteResult',
    'build_transaction',
    'empty_pending_transaction',
    'LedgerError',
    'ArithmeticOverflow',
    'InsufficientBalance',
    'RateMustDecrease',
    'Unauthorized',
    'RateLimitExceeded',
    'ExternalTransferFailed',
    'SCALE',
    'MAX_UINT',
    'MAX_AMOUNT',
    'DEFAULT_INITIAL_RATE',
    'MINT_AND_BURN_ROLE',
    'EMPTY_ACCOUNT',
    # Rate authority
    'RateAuthority',
    'RateChange',
    # Accrual
    'elapsed_seconds',
    'calculate_interest_factor',
    'calculate_balance',
    'calculate_settlement',
    'computed_balance',
    'query',
    'resolve_amount',
    'compute_settle',
    'compute_credit',
    'compute_fund',
    'compute_withdraw',
    # Transfers
    'compute_transfer',
    # Ledger
    'Ledger',
    # Bridge
    'BridgeMessage',
    'BridgeAdapter',
    'compute_bridge_burn',
    'compute_bridge_mint',
    # Transport
    'RateLimiterConfig',
    'TokenBucket',
    'MessageChannel',
    'DISABLED_LIMITER',
    # Vault
    'Vault',
]

__version__ = '1.0.0'
