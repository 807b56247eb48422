import os
from typing import NamedTuple, Optional

# define waiting periods
WAIT_READINESS_POLL = 1
WAIT_WALLET_RETRY = 2
WAIT_AFTER_DAEMON_START = 2
WAIT_AFTER_FILLING_WALLETS = 2
WAIT_BEFORE_GRAPH = 5
WAIT_STOP_DAEMON = 10

# bounded retries
READINESS_ATTEMPTS = 30
WALLET_ATTEMPTS = 5

WALLET_NAME = 'default'
LIGHTNING_RPC_SOCKET = 'lightning-rpc'

common_path = os.path.dirname(os.path.realpath(__file__))
root_path = os.path.join(common_path, '../../')


class BitcoinConfig(NamedTuple):
    rpc_host: str = '127.0.0.1'
    rpc_port: int = 18443
    rpc_user: str = 'bitcoinrpc'
    rpc_password: str = 'rpcpassword'
    network: str = 'regtest'
    bitcoind_path: Optional[str] = None

    @property
    def service_url(self) -> str:
        return (f"http://{self.rpc_user}:{self.rpc_password}@"
                f"{self.rpc_host}:{self.rpc_port}")


class LightningConfig(NamedTuple):
    network: str = 'regtest'
    lightning_dir: str = '~/.lightning'

    @property
    def socket_path(self) -> str:
        return os.path.join(
            os.path.expanduser(self.lightning_dir), self.network,
            LIGHTNING_RPC_SOCKET)


class RetryPolicy(NamedTuple):
    readiness_attempts: int = READINESS_ATTEMPTS
    readiness_interval: float = WAIT_READINESS_POLL
    wallet_attempts: int = WALLET_ATTEMPTS
    wallet_retry_wait: float = WAIT_WALLET_RETRY
    settle_wait: float = WAIT_AFTER_DAEMON_START
    stop_timeout: float = WAIT_STOP_DAEMON


logger_config = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'file': {
            'format': '[%(asctime)s %(levelname)s %(name)s] %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'standard': {
            'format': '%(message)s',
        },
    },
    'handlers': {
        'default': {
            'level': 'INFO',
            'formatter': 'standard',
            'class': 'logging.StreamHandler',
            'stream': 'ext://sys.stdout',  # Default is stderr
        },
        'file': {
            'level': 'DEBUG',
            'formatter': 'file',
            'class': 'logging.FileHandler',
            'filename': os.path.join(root_path, 'regtestgraph.log'),
            'delay': True,
        },
    },
    'loggers': {
        '': {  # root logger
            'handlers': ['default', 'file'],
            'level': 'DEBUG',
            'propagate': True
        },
    }
}
