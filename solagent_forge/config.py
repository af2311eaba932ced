import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env file at the project root
dotenv_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=dotenv_path)

SERVER_NAME = "solagent-forge"
SERVER_VERSION = "0.1.0"
PROTOCOL_VERSION = "2024-11-05"

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Upper bound for a single upstream RPC round-trip, in seconds
RPC_TIMEOUT = float(os.getenv("RPC_TIMEOUT", "15"))

SCAFFOLD_ROOT = Path(os.getenv("SCAFFOLD_ROOT", os.getcwd()))

LAMPORTS_PER_SOL = 1_000_000_000

CLUSTER_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "localhost": "http://127.0.0.1:8899",
}
DEFAULT_CLUSTER = os.getenv("DEFAULT_CLUSTER", "devnet")
if DEFAULT_CLUSTER not in CLUSTER_URLS:
    DEFAULT_CLUSTER = "devnet"

# Clusters with a faucet
AIRDROP_CLUSTERS = ("devnet", "testnet")
MAX_AIRDROP_SOL = 5.0


def resolve_endpoint(cluster, rpc_url=None):
    """Returns the RPC endpoint for a call.

    An explicit ``rpc_url`` always wins; unknown cluster names fall back to
    the default cluster.
    """
    if rpc_url:
        return rpc_url
    return CLUSTER_URLS.get(cluster, CLUSTER_URLS[DEFAULT_CLUSTER])
