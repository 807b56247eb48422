"""
Network components for the bitcoin/lightning regtest network.
"""
import enum
import http.client
import logging
import os
import os.path
import re
import shutil
import subprocess
import sys
import threading
import time
from typing import Optional, List, NamedTuple

import bitcoin
from bitcoin.base58 import Base58Error
from bitcoin.bech32 import Bech32Error
from bitcoin.rpc import RawProxy, JSONRPCError
from bitcoin.wallet import CBitcoinAddress
from pyln.client import LightningRpc
from pyln.client import RpcError as LightningRpcError

from regtestgraph.lib.common import (
    BitcoinConfig, LightningConfig, RetryPolicy, WALLET_NAME
)
from regtestgraph.lib.errors import (
    DaemonStartTimeout, DuplicateLabel, ExecutableNotFound, InvalidAddress,
    InvalidAmount, InvalidPeerId, NoAddressReturned, NotConnected, RpcError,
    RpcConnectionError, WalletSetupFailed
)
from regtestgraph.lib.node_config_templates import (
    bitcoind_arguments_template,
    network_flags
)
from regtestgraph.lib.utils import (
    bfh, btc_to_sat, parse_msat, parse_short_channel_id, sat_to_btc_string,
    unwrap_result
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

WINDOWS_BITCOIND_PATH = r"C:\Program Files\Bitcoin\daemon\bitcoind.exe"
POSIX_BITCOIND_PATH = '/usr/local/bin/bitcoind'

# core lightning error code for an invoice label that is already in use
INVOICE_LABEL_ALREADY_EXISTS = 900

# 33 byte compressed public key
PUBKEY_HEX = re.compile(r'[0-9a-fA-F]{66}')


class WalletState(enum.Enum):
    ABSENT = 'absent'
    CREATED = 'created'
    LOADED = 'loaded'


class ChannelSnapshot(NamedTuple):
    peer_id: str
    capacity: int
    state: str
    channel_id: Optional[int]


def select_network(network):
    """
    Sets the chain parameters python-bitcoinlib validates addresses against.

    :param network: str: 'regtest', 'testnet', 'signet' or 'mainnet'
    :raises ValueError: for unknown networks
    """
    bitcoin.SelectParams(network)


def validate_address(address, network):
    """
    Checks that an address belongs to the given network.

    :param address: str
    :param network: str
    :return: str: the address
    :raises InvalidAddress:
    """
    if not isinstance(address, str):
        raise InvalidAddress(f"address must be a string, got {address!r}")
    select_network(network)
    try:
        CBitcoinAddress(address)
    except (Base58Error, Bech32Error, ValueError) as e:
        raise InvalidAddress(
            f"{address!r} is not a valid {network} address: {e}")
    return address


def validate_pubkey(peer_id):
    """
    Checks that a peer id is a hex encoded, compressed public key.

    :param peer_id: str
    :return: str: the normalized (lower case) peer id
    :raises InvalidPeerId:
    """
    if not isinstance(peer_id, str) or not PUBKEY_HEX.fullmatch(peer_id):
        raise InvalidPeerId(
            f"peer id is not 66 hex characters: {peer_id!r}")
    key = bfh(peer_id)
    if len(key) != 33 or key[0] not in (2, 3):
        raise InvalidPeerId(
            f"peer id is not a compressed public key: {peer_id!r}")
    return peer_id.lower()


def _check_positive_int(value, what, error=ValueError):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise error(f"{what} must be a positive integer, got {value!r}")
    return value


def channel_snapshots(funds) -> List[ChannelSnapshot]:
    """
    Extracts the channels of a listfunds response.

    Entries lacking a peer id or a readable amount are skipped. An
    unreadable short channel id leaves the channel id unset.

    :param funds: dict: listfunds response
    :return: list of ChannelSnapshot
    """
    snapshots = []
    for c in unwrap_result(funds).get('channels') or []:
        peer_id = c.get('peer_id')
        try:
            capacity = parse_msat(c['amount_msat'])
        except (KeyError, TypeError, ValueError):
            continue
        if peer_id is None:
            continue
        try:
            channel_id = parse_short_channel_id(c.get('short_channel_id'))
        except (AttributeError, ValueError):
            logger.debug("Unreadable short channel id %r.",
                         c.get('short_channel_id'))
            channel_id = None
        snapshots.append(ChannelSnapshot(
            peer_id=peer_id,
            capacity=capacity,
            state=c.get('state', 'unknown'),
            channel_id=channel_id,
        ))
    return snapshots


def default_bitcoind_path():
    """
    Platform default location of the bitcoind executable.

    :return: str
    """
    if sys.platform == 'win32':
        return WINDOWS_BITCOIND_PATH
    return shutil.which('bitcoind') or POSIX_BITCOIND_PATH


class DaemonSupervisor(object):
    """
    Makes sure bitcoind is reachable and owns the process if it had to be
    launched.
    """

    def __init__(self, probe, retry_policy: RetryPolicy):
        """
        :param probe: callable: returns True if bitcoind answers rpc calls
        :param retry_policy: RetryPolicy
        """
        self.probe = probe
        self.retry_policy = retry_policy
        self.process: Optional[subprocess.Popen] = None

    @staticmethod
    def resolve_executable(config: BitcoinConfig):
        """
        Determines the bitcoind executable.

        :param config: BitcoinConfig
        :return: str: path to bitcoind
        :raises ExecutableNotFound:
        """
        path = config.bitcoind_path or default_bitcoind_path()
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            raise ExecutableNotFound(
                f"bitcoind executable not found: {path}")
        return path

    def ensure_running(self, config: BitcoinConfig):
        """
        Launches bitcoind if it isn't running yet.

        A daemon that doesn't become ready in time is only logged, it may
        still be ready once it is actually needed.

        :param config: BitcoinConfig
        :return: bool: True if bitcoind answers rpc calls
        """
        if self.probe():
            logger.info("BTC: Bitcoind is already running.")
            return True

        if self.process is not None and self.process.poll() is None:
            # only one process is owned, keep waiting for the one we started
            logger.info("BTC: Bitcoind (pid %s) is still starting up.",
                        self.process.pid)
        else:
            if self.process is not None:
                logger.info("BTC: Bitcoind (pid %s) exited with code %s.",
                            self.process.pid, self.process.returncode)
                self.process.wait()
                self.process = None
            path = self.resolve_executable(config)
            self.start_process(path, config)
        try:
            self.wait_until_ready()
        except DaemonStartTimeout as e:
            logger.warning("BTC: Continuing with degraded readiness: %s", e)
            return False
        logger.info("BTC: Bitcoind started.")
        return True

    def start_process(self, path, config: BitcoinConfig):
        """
        Starts a detached bitcoind subprocess.
        """
        if config.network not in network_flags:
            raise ValueError(f"unknown network: {config.network}")
        command = [path]
        if network_flags[config.network]:
            command.append(network_flags[config.network])
        command += [a.format(**config._asdict())
                    for a in bitcoind_arguments_template]

        logger.info("BTC: Starting bitcoind from %s.", path)
        logger.debug(' '.join(command))
        self.process = subprocess.Popen(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def wait_until_ready(self):
        """
        Polls bitcoind until it answers.

        :raises DaemonStartTimeout: if the attempts are exhausted or the
            process exited
        """
        attempts = self.retry_policy.readiness_attempts
        logger.info("BTC: Waiting for bitcoind to initialize.")
        for attempt in range(1, attempts + 1):
            time.sleep(self.retry_policy.readiness_interval)
            if self.probe():
                logger.debug("BTC: Ready after %d polls.", attempt)
                return
            if self.process is not None and self.process.poll() is not None:
                raise DaemonStartTimeout(
                    f"bitcoind exited with code {self.process.returncode}")
        raise DaemonStartTimeout(
            f"bitcoind not ready after {attempts} polls")

    def stop(self):
        """
        Terminates bitcoind if it was started by us, otherwise does nothing.
        """
        if self.process is None:
            return
        process, self.process = self.process, None
        logger.info("BTC: Stopping bitcoind (pid %s).", process.pid)
        process.terminate()
        try:
            process.wait(timeout=self.retry_policy.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("BTC: Bitcoind didn't terminate, killing it.")
            process.kill()
            process.wait()
        logger.info("BTC: Stopped bitcoind.")


class WalletBootstrapper(object):
    """
    Creates or loads the wallet, retrying while bitcoind is still busy
    initializing.
    """

    def __init__(self, rpc, retry_policy: RetryPolicy,
                 wallet_name=WALLET_NAME):
        """
        :param rpc: callable: rpc(method, *args)
        :param retry_policy: RetryPolicy
        :param wallet_name: str
        """
        self.rpc = rpc
        self.retry_policy = retry_policy
        self.wallet_name = wallet_name
        self.state = WalletState.ABSENT

    def ensure_wallet(self):
        """
        Makes sure the wallet is loaded.

        :return: WalletState
        :raises WalletSetupFailed: after all attempts failed
        """
        if self.state is WalletState.LOADED:
            return self.state

        attempts = self.retry_policy.wallet_attempts
        for attempt in range(1, attempts + 1):
            self._create()
            try:
                self.rpc('loadwallet', self.wallet_name)
            except RpcError as e:
                if 'already loaded' in e.message:
                    logger.info("BTC: Wallet '%s' was already loaded.",
                                self.wallet_name)
                    self.state = WalletState.LOADED
                    return self.state
                logger.info(
                    "BTC: Waiting for bitcoind to be ready "
                    "(wallet attempt %d/%d): %s", attempt, attempts, e)
                if attempt < attempts:
                    time.sleep(self.retry_policy.wallet_retry_wait)
                continue

            logger.info("BTC: Loaded wallet '%s'.", self.wallet_name)
            self.state = WalletState.LOADED
            return self.state

        raise WalletSetupFailed(
            f"failed to set up wallet '{self.wallet_name}' "
            f"after {attempts} attempts")

    def _create(self):
        try:
            self.rpc('createwallet', self.wallet_name)
        except RpcError as e:
            if 'already exists' in e.message:
                logger.debug("BTC: Wallet '%s' already exists.",
                             self.wallet_name)
            else:
                logger.warning("BTC: Creating wallet failed: %s", e)
            return
        logger.info("BTC: Created new wallet '%s'.", self.wallet_name)
        self.state = WalletState.CREATED


class BitcoinNode(object):
    """
    Bitcoind node abstraction.

    Use as a context manager to make sure a bitcoind launched by this
    instance is terminated again:

        with BitcoinNode(config) as node:
            node.start()
            node.generate_blocks(101)
    """

    def __init__(self, config: Optional[BitcoinConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        """
        :param config: BitcoinConfig: rpc connection and executable
        :param retry_policy: RetryPolicy: polling and retry bounds
        """
        self.config = config or BitcoinConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        select_network(self.config.network)

        self.supervisor = DaemonSupervisor(self.is_responsive,
                                           self.retry_policy)
        self.wallet = WalletBootstrapper(self.rpc, self.retry_policy)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self.supervisor.process

    def rpc(self, method, *args):
        """
        Invokes a bitcoind rpc method.

        A new connection is used for every call, bitcoind may close idle
        connections between calls.

        :param method: str
        :return: decoded json result
        :raises RpcError:
        """
        start = time.monotonic()
        try:
            proxy = RawProxy(service_url=self.config.service_url)
            result = proxy._call(method, *args)
        except JSONRPCError as e:
            error = getattr(e, 'error', None) or {}
            logger.debug("BTC: %s failed in %.3fs: %s",
                         method, time.monotonic() - start, e)
            raise RpcError(method, error.get('message', str(e)),
                           error.get('code'))
        except (OSError, http.client.HTTPException) as e:
            logger.debug("BTC: %s unreachable after %.3fs: %s",
                         method, time.monotonic() - start, e)
            raise RpcConnectionError(method, str(e) or type(e).__name__)
        logger.debug("BTC: %s ok in %.3fs", method, time.monotonic() - start)
        return result

    def is_responsive(self):
        try:
            self.rpc('getblockchaininfo')
        except RpcError:
            return False
        return True

    def start(self):
        """
        Gets bitcoind going and sets up the wallet.

        :return: bool: True if bitcoind was ready in time
        :raises ExecutableNotFound:
        """
        ready = self.supervisor.ensure_running(self.config)
        # give the wallet database some time to initialize
        time.sleep(self.retry_policy.settle_wait)
        try:
            self.wallet.ensure_wallet()
            logger.info("BTC: Wallet setup completed.")
        except WalletSetupFailed as e:
            logger.warning("BTC: Wallet setup failed: %s", e)
        return ready

    def stop(self):
        self.supervisor.stop()

    def get_chain_status(self):
        return self.rpc('getblockchaininfo')

    def get_blockheight(self):
        return self.get_chain_status()['blocks']

    def generate_blocks(self, count) -> List[str]:
        """
        Mines blocks to a fresh wallet address.

        :param count: int
        :return: list of str: block hashes in mining order
        """
        _check_positive_int(count, 'block count')
        address = self.get_new_address()
        logger.info("BTC: Mining %d blocks to %s.", count, address)
        block_hashes = self.rpc('generatetoaddress', count, address)
        logger.debug("BTC: Mined blocks %s.", block_hashes)
        return list(block_hashes)

    def generate_to_address(self, count, address) -> List[str]:
        """
        Mines blocks to the given address.

        Only base58 and segwit v0 (bech32) addresses are accepted, taproot
        addresses (bech32m) are refused with InvalidAddress.

        :param count: int
        :param address: str
        :return: list of str: block hashes in mining order
        """
        _check_positive_int(count, 'block count')
        validate_address(address, self.config.network)
        logger.info("BTC: Mining %d blocks to %s.", count, address)
        return list(self.rpc('generatetoaddress', count, address))

    def send_to_address(self, address, amount) -> str:
        """
        Sends funds to a given address.

        Only base58 and segwit v0 (bech32) addresses are accepted, taproot
        addresses (bech32m) are refused with InvalidAddress.

        :param address: str
        :param amount: float, str or Decimal: amount in BTC
        :return: str: transaction id
        """
        validate_address(address, self.config.network)
        sat = btc_to_sat(amount)
        self.wallet.ensure_wallet()
        txid = self.rpc('sendtoaddress', address, sat_to_btc_string(sat))
        logger.info("BTC: Sent %d sat to %s in %s.", sat, address, txid)
        return txid

    def get_new_address(self) -> str:
        """
        Generates a new bech32 address in the wallet.

        :return: str: address
        """
        self.wallet.ensure_wallet()
        address = self.rpc('getnewaddress', '', 'bech32')
        validate_address(address, self.config.network)
        logger.debug("BTC: Generated new address %s.", address)
        return address


class LightningNode(object):
    """
    Core lightning node abstraction, talking to lightningd over its rpc
    socket.

    Calls are serialized by a lock, so one instance can be shared between
    threads with at most one call in flight.
    """

    def __init__(self, name, config: Optional[LightningConfig] = None):
        """
        :param name: str: unique human readable identifier, e.g. A, B, ...
        :param config: LightningConfig
        """
        self.name = name
        self.config = config or LightningConfig()
        self.pubkey: Optional[str] = None
        self._rpc: Optional[LightningRpc] = None
        self._lock = threading.Lock()

    @property
    def socket_path(self):
        return self.config.socket_path

    @property
    def connected(self):
        return self._rpc is not None

    def connect(self):
        """
        Opens the rpc channel to lightningd.

        :raises RpcConnectionError: if the rpc socket doesn't exist
        """
        if not os.path.exists(self.socket_path):
            raise RpcConnectionError(
                'connect', f"rpc socket not found: {self.socket_path}")
        logger.info("%s: Connecting to %s.", self.name, self.socket_path)
        self._rpc = LightningRpc(self.socket_path)

    def rpc(self, method, **params):
        """
        Invokes a lightningd rpc method.

        :param method: str
        :param params: named parameters, None values are left out
        :return: dict
        :raises NotConnected: if connect() wasn't called
        :raises RpcError:
        """
        if self._rpc is None:
            raise NotConnected(
                f"{self.name}: connect() needs to be called before {method}")
        params = {k: v for k, v in params.items() if v is not None}
        start = time.monotonic()
        with self._lock:
            try:
                result = self._rpc.call(method, params)
            except LightningRpcError as e:
                error = e.error if isinstance(e.error, dict) else {}
                logger.debug("%s: %s failed in %.3fs: %s", self.name, method,
                             time.monotonic() - start, error)
                raise RpcError(method, error.get('message', str(e)),
                               error.get('code'))
            except ValueError as e:
                # malformed responses, pyln's RpcError is handled above
                logger.debug("%s: %s failed in %.3fs: %s", self.name, method,
                             time.monotonic() - start, e)
                raise RpcError(method, str(e))
            except OSError as e:
                logger.debug("%s: %s unreachable after %.3fs: %s", self.name,
                             method, time.monotonic() - start, e)
                raise RpcConnectionError(method, str(e))
        logger.debug("%s: %s ok in %.3fs", self.name, method,
                     time.monotonic() - start)
        return result

    def get_node_info(self):
        return self.rpc('getinfo')

    def set_node_pubkey(self):
        info = unwrap_result(self.get_node_info())
        logger.info("%s: setting node public key to %s",
                    self.name, info['id'])
        self.pubkey = info['id']

    def create_invoice(self, amount_msat, label, description):
        """
        Creates an invoice.

        :param amount_msat: int
        :param label: str: unique per node
        :param description: str
        :return: dict
        :raises DuplicateLabel: if the label was used before
        """
        _check_positive_int(amount_msat, 'invoice amount', InvalidAmount)
        logger.info("%s: Creating invoice '%s' over %d msat.",
                    self.name, label, amount_msat)
        try:
            return self.rpc('invoice', amount_msat=amount_msat, label=label,
                            description=description)
        except RpcError as e:
            if (e.code == INVOICE_LABEL_ALREADY_EXISTS
                    or 'Duplicate label' in e.message):
                raise DuplicateLabel(e.operation, e.message, e.code)
            raise

    def open_channel(self, peer_id, amount_sat):
        """
        Funds a channel with a connected peer.

        :param peer_id: str: public key of the peer
        :param amount_sat: int: channel capacity
        :return: dict
        """
        peer_id = validate_pubkey(peer_id)
        _check_positive_int(amount_sat, 'channel capacity', InvalidAmount)
        logger.info("%s: Open channel to %s over %d sat.",
                    self.name, peer_id, amount_sat)
        return self.rpc('fundchannel', id=peer_id, amount=amount_sat)

    def connect_peer(self, peer_id, host, port):
        """
        Connects to another lightning node.

        :param peer_id: str: public key of the peer
        :param host: str
        :param port: int
        :return: dict
        """
        peer_id = validate_pubkey(peer_id)
        logger.info("%s: Connecting to %s@%s:%s", self.name, peer_id, host,
                    port)
        return self.rpc('connect', id=peer_id, host=host, port=port)

    def get_new_address(self):
        """
        Generates an on-chain address of the node's wallet.

        :return: str
        :raises NoAddressReturned: if lightningd didn't hand out a bech32
            address
        """
        response = unwrap_result(self.rpc('newaddr'))
        address = response.get('bech32') if isinstance(response, dict) \
            else None
        if not address:
            raise NoAddressReturned(
                f"{self.name}: no bech32 address in response {response}")
        logger.debug("%s: Generated new address %s.", self.name, address)
        return address

    def list_funds(self):
        return self.rpc('listfunds')

    def listchannels(self) -> List[ChannelSnapshot]:
        return channel_snapshots(self.list_funds())
