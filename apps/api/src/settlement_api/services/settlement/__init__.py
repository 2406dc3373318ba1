"""Settlement engine exports."""

from .catalog import RedemptionCatalog, compute_active_flag  # noqa: F401
from .codes import (  # noqa: F401
    SHORT_CODE_ALPHABET,
    allocate_short_code,
    generate_reference_number,
    generate_short_code,
    normalize_short_code,
)
from .directory import SettlementDirectory  # noqa: F401
from .exceptions import *  # noqa: F401,F403
from .ledger import BalanceLedger, BalanceSnapshot, BalanceUpdateConflict  # noqa: F401
from .pending_store import (  # noqa: F401
    DatabasePendingTransactionStore,
    InMemoryPendingTransactionStore,
    PendingEntry,
    PendingPayload,
    PendingTransactionStore,
    RedisPendingTransactionStore,
    build_pending_store,
    decode_qr_payload,
    encode_qr_payload,
)
from .processor import (  # noqa: F401
    PendingTransactionCreated,
    RewardRedemption,
    SettlementProcessor,
    SettlementResult,
    SettlementState,
)
from .reconciler import (  # noqa: F401
    BalanceReconciliation,
    PointsLedgerReconciler,
    ReconciliationConflict,
    ReconciliationReport,
)
from .rewards import (  # noqa: F401
    CartItem,
    ResolvedCart,
    ResolvedLine,
    RewardDescriptor,
    RewardResolver,
    discount_fraction,
    round2,
    summarize_lines,
)
