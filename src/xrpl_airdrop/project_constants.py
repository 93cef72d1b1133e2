"""
Network-wide parameters for the XRPL holder airdrop.

The delays and retry counts below keep the tool under the public
nodes' rate limits. Changing them changes how hard the run hits the node.
"""

# Public mainnet JSON-RPC endpoint (used when neither --rpc-url nor XRPL_RPC_URL is set)
DEFAULT_RPC_URL = "https://s1.ripple.com:51234/"

# Off-chain sources for NFT collections
NFT_COLLECTION_API = "https://api.xrpldata.com/api/v1/xls20-nfts"
IPFS_GATEWAY = "https://ipfs.io/ipfs/"

# Explorer link written into every ledger entry
DEFAULT_EXPLORER_URL = "https://xrpscan.com/tx/"

# Snapshot timestamps
DEFAULT_TIMEZONE = "America/New_York"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Engine result of a fully applied transaction
TES_SUCCESS = "tesSUCCESS"

# Engine result classes that never reach the ledger (sequence not consumed)
REJECTED_RESULT_PREFIXES = ("tem", "tef", "tel")

# Eligibility phase
ELIGIBILITY_CONCURRENCY = 5
ELIGIBILITY_RETRIES = 3
ELIGIBILITY_RETRY_DELAY_S = 1.0
ELIGIBILITY_REQUEST_DELAY_S = 0.1

# Dispatch phase
SUBMIT_DELAY_S = 0.5
POLL_RETRIES = 10
POLL_RETRY_DELAY_S = 1.0
POLL_DELAY_S = 0.5

# Ledgers a signed payment stays valid for
LAST_LEDGER_OFFSET = 20

# NFT listing lookups
SELL_OFFER_RETRIES = 3

# Output files
SNAPSHOT_READY_FILE = "qualifiedWithTrustline_snapshot.json"
SNAPSHOT_BLOCKED_FILE = "qualifiedWithoutTrustline_snapshot.json"
SNAPSHOT_NON_QUALIFIED_FILE = "nonQualified_snapshot.json"
LEDGER_SUCCESS_FILE = "transactions_success.json"
LEDGER_FAILED_FILE = "transactions_failed.json"
