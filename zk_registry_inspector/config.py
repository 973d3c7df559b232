import os

DEFAULT_RPC = os.getenv("RPC_URL", "http://127.0.0.1:8545")
DEFAULT_BRIDGEHUB = os.getenv("BRIDGEHUB_ADDRESS") or None
# Many hosted providers cap eth_getLogs at a few thousand blocks; lower this for them.
DEFAULT_SCAN_WINDOW = int(os.getenv("INSPECTOR_SCAN_WINDOW", "10000"))
DEFAULT_MAX_DEPTH = int(os.getenv("INSPECTOR_MAX_DEPTH", "0"))
DEFAULT_RPC_TIMEOUT = int(os.getenv("INSPECTOR_RPC_TIMEOUT", "25"))

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ETH_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000001"
DEPLOYER_ADDRESS = "0x0000000000000000000000000000000000008006"
L2_BRIDGEHUB_ADDRESS = "0x0000000000000000000000000000000000010002"
L2_ASSET_ROUTER_ADDRESS = "0x0000000000000000000000000000000000010003"

DEFAULT_TOKEN_DECIMALS = 18
BALANCE_PLACES = 6

# Storage layout of the state-transition (diamond) contract, legacy slot path.
SLOT_VERIFIER = 10
SLOT_TOTAL_BATCHES_EXECUTED = 11
SLOT_TOTAL_BATCHES_VERIFIED = 12
SLOT_TOTAL_BATCHES_COMMITTED = 13
SLOT_BOOTLOADER_HASH = 23
SLOT_DEFAULT_ACCOUNT_HASH = 24
SLOT_PROTOCOL_VERSION = 33
SLOT_SYSTEM_UPGRADE_TX_HASH = 34
SLOT_ADMIN = 36
SLOT_CHAIN_ID = 40
