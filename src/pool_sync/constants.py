"""Ledger and rebalancing constants."""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Rootstock testnet public nodes, tried in order
DEFAULT_RPC_ENDPOINTS = (
    "https://public-node.testnet.rsk.co",
    "https://rpc.testnet.rootstock.io/public",
    "https://mycrypto.testnet.rsk.co",
)

TOKEN_DECIMALS = 18

# Pair registry probing: the factory exposes allPairs(i) but no length accessor
MAX_PAIR_PROBES = 1_000

UNKNOWN_SYMBOL = "UNKNOWN"

# Absolute ratio deviation above which a pool is flagged for rebalancing
REBALANCE_THRESHOLD = 0.10
# Deviation at or below which an estimate needs no swap
NO_SWAP_TOLERANCE = 0.001
# Deviation below which execution and quick estimates treat a pool as balanced
BALANCED_TOLERANCE = 0.01
# Price impact percent at or above which an estimate advises against rebalancing
MAX_PRICE_IMPACT_PERCENT = 5.0

BASIS_POINTS = 10_000
DEFAULT_REBALANCE_GAS = 200_000

MAX_HISTORICAL_SAMPLES = 1_000

# Seconds until a freshly submitted rebalance is expected to confirm
ESTIMATED_CONFIRMATION_SECONDS = 30
