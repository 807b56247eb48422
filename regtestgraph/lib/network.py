"""
Module for driving a bitcoin/lightning regtest network and assembling its
channel graph.
"""
import importlib
import importlib.util
import logging
import os
import time
from typing import Dict, Optional

from regtestgraph.lib.common import (
    BitcoinConfig, LightningConfig, RetryPolicy, WAIT_AFTER_FILLING_WALLETS,
    WAIT_BEFORE_GRAPH
)
from regtestgraph.lib.errors import DuplicateLabel
from regtestgraph.lib.graph_testing import graph_test
from regtestgraph.lib.network_components import BitcoinNode, LightningNode
from regtestgraph.lib.topology import NetworkGraph
from regtestgraph.lib.utils import format_dict, unwrap_result

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# coinbase outputs need 100 confirmations to be spendable
COINBASE_MATURITY_HEIGHT = 101
CONFIRMATION_BLOCKS = 6
TEST_INVOICE_MSAT = 1000000


def load_network_definition(network_definition_location):
    """
    Imports a network definition module.

    :param network_definition_location: str: module name in
        regtestgraph.network_definitions or absolute path to a python file
    :return: module
    """
    if os.path.isabs(network_definition_location):
        spec = importlib.util.spec_from_file_location(
            "network_definition", network_definition_location)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(
        ".network_definitions." + network_definition_location,
        package='regtestgraph')


class Network(object):
    """
    Wires the bitcoind node and the lightning nodes together and controls
    the logic.

    The lightning nodes are expected to run already, bitcoind is started if
    it isn't reachable.
    """
    def __init__(self, bitcoin_config: Optional[BitcoinConfig] = None,
                 network_definition_location='two_peers',
                 retry_policy: Optional[RetryPolicy] = None,
                 fund_amount=1):
        """
        :param bitcoin_config: BitcoinConfig:
            rpc connection of bitcoind and where to find its executable
        :param network_definition_location: str:
            specifies python module in network_definitions which defines the
            network, alternatively an absolute path to a python file
        :param retry_policy: RetryPolicy:
            polling and retry bounds used while bringing up bitcoind
        :param fund_amount: float: BTC sent to each lightning node's wallet
        """
        network_definition_module = load_network_definition(
            network_definition_location)
        # check sanity of network definition
        graph_test(network_definition_module.nodes)
        self.network_definition = network_definition_module.nodes

        self.bitcoind = BitcoinNode(bitcoin_config, retry_policy)
        self.fund_amount = fund_amount

        self.ln_nodes: Dict[str, LightningNode] = {}
        for node_name, node_properties in self.network_definition.items():
            config = LightningConfig(
                network=self.bitcoind.config.network,
                lightning_dir=node_properties['lightning_dir'],
            )
            self.ln_nodes[node_name] = LightningNode(node_name, config)
        self.master_node = self.ln_nodes['A']

        # node name (e.g. 'A') -> node pub key
        self.node_mapping = {}
        # channel number -> endpoints and funding txid
        self.channel_mapping: Dict[int, Dict] = {}

        self.graph: Optional[NetworkGraph] = None

    def run_nocleanup(self):
        """
        Brings up the network without cleaning up in the end. Use in
        conjunction with self.cleanup() (try-finally).
        """
        logger.info("NET: Running regtest network.")
        self.bitcoind.start()
        logger.debug(
            f"NET: chain status\n{format_dict(self.bitcoind.get_chain_status())}")
        self.mine_mature_coins()

        self.nodes_connect()
        self.determine_node_mapping()
        self.nodes_print_info()
        self.master_node_create_invoice()

        self.nodes_fill_wallets()
        time.sleep(WAIT_AFTER_FILLING_WALLETS)
        self.nodes_connect_open_channels()

        # let the nodes pick up the confirmed channels
        time.sleep(WAIT_BEFORE_GRAPH)
        self.graph = self.assemble_graph()
        logger.info("NET: Local lightning network is running.")

    def run_once(self, output=None):
        """
        Run the network, optionally write the graph and terminate after.

        :param output: str: path of the dot file
        """
        try:
            self.run_nocleanup()
            if output:
                self.write_graph(output)
        finally:
            self.cleanup()

    def cleanup(self):
        self.bitcoind.stop()

    def mine_mature_coins(self):
        """
        Makes sure the bitcoind wallet has spendable coinbase outputs.
        """
        height = self.bitcoind.get_blockheight()
        if height < COINBASE_MATURITY_HEIGHT:
            self.bitcoind.generate_blocks(COINBASE_MATURITY_HEIGHT - height)

    def nodes_connect(self):
        """
        Opens the rpc channels to all LN nodes.
        """
        for node_name, node_instance in self.ln_nodes.items():
            node_instance.connect()

    def nodes_print_info(self):
        """
        Prints out essential information about the state of a node.
        """
        for node_name, node_instance in self.ln_nodes.items():
            info = node_instance.get_node_info()
            logger.debug(f"{node_name}:\n{format_dict(info)}")

    def determine_node_mapping(self):
        """
        Updates the node mapping.

        Sets the mapping (dict)
            self.node_mapping: node name (e.g. 'A') -> node pub key
        """
        for node_name, node_instance in self.ln_nodes.items():
            node_instance.set_node_pubkey()
            self.node_mapping[node_name] = node_instance.pubkey
        logger.debug(f"NET: node mapping\n{format_dict(self.node_mapping)}")

    def master_node_create_invoice(self):
        label = f"test_invoice_{int(time.time())}"
        try:
            invoice = self.master_node.create_invoice(
                TEST_INVOICE_MSAT, label, 'Test payment')
        except DuplicateLabel as e:
            logger.warning("NET: Test invoice not created: %s", e)
            return None
        logger.info("NET: Created invoice %s.",
                    unwrap_result(invoice).get('bolt11'))
        return invoice

    def nodes_fill_wallets(self):
        """
        Funds LN nodes' wallets and confirms the transactions.
        """
        for node_name, node_instance in self.ln_nodes.items():
            address = node_instance.get_new_address()
            logger.info("%s: funding %s", node_name, address)
            self.bitcoind.send_to_address(address, self.fund_amount)
        self.bitcoind.generate_blocks(CONFIRMATION_BLOCKS)

    def nodes_connect_open_channels(self):
        """
        Connects LN nodes and opens the defined channels between them.

        Channels to a peer that already has a channel with the node are not
        opened again.
        """
        opened = False
        for node_name, node_instance in self.ln_nodes.items():
            existing_peers = {c.peer_id for c in node_instance.listchannels()}
            for channel, channel_data in \
                    self.network_definition[node_name]['channels'].items():
                remote_name = channel_data['to']
                remote_pubkey = self.node_mapping[remote_name]
                if remote_pubkey in existing_peers:
                    logger.info("%s: already has a channel with %s, "
                                "skipping channel %s.",
                                node_name, remote_name, channel)
                    continue

                remote_properties = self.network_definition[remote_name]
                node_instance.connect_peer(
                    remote_pubkey,
                    remote_properties['host'],
                    remote_properties['port'],
                )
                info = node_instance.open_channel(
                    remote_pubkey, int(channel_data['capacity']))
                self.channel_mapping[channel] = {
                    'from': node_name,
                    'to': remote_name,
                    'funding_txid': unwrap_result(info).get('txid'),
                }
                opened = True

        if opened:
            logger.info(
                f"NET: funded channels\n{format_dict(self.channel_mapping)}")
            # finalize channel creation
            self.bitcoind.generate_blocks(CONFIRMATION_BLOCKS)

    def assemble_graph(self) -> NetworkGraph:
        """
        Gives a representation of the state of the LN network.

        Each node only has a local view of the network, therefore we need to
        ask each node about its channels and merge the information.

        :return: NetworkGraph
        """
        graph = NetworkGraph()
        for node_name, node_instance in self.ln_nodes.items():
            graph.update_from_node_info(
                node_instance.get_node_info(), node_instance.list_funds())
        logger.info("NET: Graph has %d nodes and %d channels.",
                    graph.node_count, graph.edge_count)
        return graph

    def write_graph(self, path):
        """
        Writes the channel graph as a dot file.

        :param path: str
        """
        if self.graph is None:
            self.graph = self.assemble_graph()
        self.graph.write_dot(path)
        logger.info("NET: To render the graph, run:")
        logger.info("dot -Tpng %s -o network.png", path)
