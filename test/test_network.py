"""
Tests for the orchestration of a network run, bitcoind and the lightning
nodes are replaced by in-memory fakes.
"""
import os
import tempfile
from unittest import TestCase, mock

from regtestgraph.lib.common import BitcoinConfig
from regtestgraph.lib.errors import DuplicateLabel, RpcConnectionError
from regtestgraph.lib.network import Network
from regtestgraph.lib.network_components import ChannelSnapshot


class FakeBitcoinNode(object):
    def __init__(self, config=None, retry_policy=None):
        self.config = config or BitcoinConfig()
        self.height = 0
        self.started = False
        self.stopped = False
        self.mined = []
        self.sent = []

    def start(self):
        self.started = True
        return True

    def stop(self):
        self.stopped = True

    def get_chain_status(self):
        return {'chain': self.config.network, 'blocks': self.height}

    def get_blockheight(self):
        return self.height

    def generate_blocks(self, count):
        self.mined.append(count)
        self.height += count
        return [f"{h:064x}" for h in range(self.height - count, self.height)]

    def send_to_address(self, address, amount):
        self.sent.append((address, amount))
        return 'ab' * 32


class FakeLightningNode(object):
    def __init__(self, name, config=None):
        self.name = name
        self.config = config
        self.pubkey = None
        self.connected = False
        self.channels = []
        self.peers = []
        self.invoices = []
        self.invoice_error = None

    @property
    def node_id(self):
        return '02' + f"{ord(self.name):02x}" * 32

    def connect(self):
        self.connected = True

    def get_node_info(self):
        return {'id': self.node_id, 'alias': self.name.lower()}

    def set_node_pubkey(self):
        self.pubkey = self.node_id

    def create_invoice(self, amount_msat, label, description):
        if self.invoice_error:
            raise self.invoice_error
        self.invoices.append((amount_msat, label, description))
        return {'bolt11': 'lnbcrt10u1...'}

    def get_new_address(self):
        return f"bcrt1q{self.name.lower()}"

    def connect_peer(self, peer_id, host, port):
        self.peers.append((peer_id, host, port))

    def open_channel(self, peer_id, amount_sat):
        self.channels.append({
            'peer_id': peer_id,
            'amount_msat': amount_sat * 1000,
            'state': 'CHANNELD_AWAITING_LOCKIN',
        })
        return {'txid': f"{len(self.channels):064x}"}

    def list_funds(self):
        return {'outputs': [], 'channels': list(self.channels)}

    def listchannels(self):
        return [ChannelSnapshot(c['peer_id'], c['amount_msat'], c['state'],
                                None) for c in self.channels]


@mock.patch('regtestgraph.lib.network.time.sleep')
@mock.patch('regtestgraph.lib.network.LightningNode', FakeLightningNode)
@mock.patch('regtestgraph.lib.network.BitcoinNode', FakeBitcoinNode)
class NetworkTests(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.output = os.path.join(self.tmp.name, 'network.dot')

    def test_lightning_dirs_from_definition(self, sleep):
        network = Network(network_definition_location='triangle')

        self.assertEqual(['A', 'B', 'C'], list(network.ln_nodes))
        self.assertEqual('~/.lightning2',
                         network.ln_nodes['B'].config.lightning_dir)
        self.assertEqual('regtest', network.ln_nodes['B'].config.network)
        self.assertIs(network.ln_nodes['A'], network.master_node)

    def test_run_once(self, sleep):
        network = Network(network_definition_location='triangle',
                          fund_amount=0.5)
        with self.assertLogs('regtestgraph.lib.network', level='INFO') as logs:
            network.run_once(output=self.output)

        bitcoind = network.bitcoind
        self.assertTrue(bitcoind.started)
        self.assertTrue(bitcoind.stopped)
        # maturity, wallet funding and channel confirmation
        self.assertEqual([101, 6, 6], bitcoind.mined)
        self.assertEqual(
            [('bcrt1qa', 0.5), ('bcrt1qb', 0.5), ('bcrt1qc', 0.5)],
            bitcoind.sent)

        node_a = network.ln_nodes['A']
        node_b = network.ln_nodes['B']
        self.assertEqual([(node_b.node_id, '127.0.0.1', 9736)], node_a.peers)
        self.assertEqual(2000000000, node_a.channels[0]['amount_msat'])
        self.assertEqual(1, len(node_a.invoices))
        self.assertEqual(node_a.node_id, network.node_mapping['A'])
        self.assertEqual(
            {'from': 'A', 'to': 'B', 'funding_txid': f"{1:064x}"},
            network.channel_mapping[1])
        self.assertEqual({1, 2, 3}, set(network.channel_mapping))
        # funding txids are reported per channel
        funded = [line for line in logs.output if 'funded channels' in line]
        self.assertEqual(1, len(funded))
        self.assertIn(f"{1:064x}", funded[0])

        self.assertEqual(3, network.graph.node_count)
        self.assertEqual(3, network.graph.edge_count)
        with open(self.output) as f:
            dot = f.read()
        for edge in ('0 -> 1', '1 -> 2', '2 -> 0'):
            self.assertIn(edge, dot)
        self.assertIn('label = "b\\n(', dot)

    def test_existing_channels_are_not_reopened(self, sleep):
        network = Network(network_definition_location='two_peers')
        node_a = network.ln_nodes['A']
        node_a.channels.append({
            'peer_id': network.ln_nodes['B'].node_id,
            'amount_msat': 1000000000,
            'state': 'CHANNELD_NORMAL',
        })
        network.bitcoind.height = 150

        network.run_once()

        self.assertEqual([], node_a.peers)
        self.assertEqual(1, len(node_a.channels))
        # only the wallet funding is confirmed
        self.assertEqual([6], network.bitcoind.mined)
        self.assertEqual({}, network.channel_mapping)
        self.assertFalse(os.path.exists(self.output))

    def test_duplicate_invoice_label_is_tolerated(self, sleep):
        network = Network(network_definition_location='two_peers')
        network.master_node.invoice_error = DuplicateLabel(
            'invoice', "Duplicate label 'test_invoice'", 900)

        with self.assertLogs('regtestgraph.lib.network', level='WARNING'):
            network.run_once(output=self.output)
        self.assertTrue(os.path.exists(self.output))

    def test_bitcoind_is_stopped_on_failure(self, sleep):
        network = Network(network_definition_location='two_peers')
        error = RpcConnectionError('connect', 'rpc socket not found')
        with mock.patch.object(FakeLightningNode, 'connect',
                               side_effect=error):
            with self.assertRaises(RpcConnectionError):
                network.run_once(output=self.output)

        self.assertTrue(network.bitcoind.stopped)
        self.assertFalse(os.path.exists(self.output))

    def test_definition_from_path(self, sleep):
        path = os.path.join(self.tmp.name, 'single.py')
        with open(path, 'w') as f:
            f.write(
                "nodes = {'A': {'lightning_dir': '/tmp/ln', "
                "'host': '127.0.0.1', 'port': 9735, 'channels': {}}}\n")

        network = Network(network_definition_location=path)
        network.run_once(output=self.output)

        self.assertEqual(1, network.graph.node_count)
        self.assertEqual(0, network.graph.edge_count)

    def test_broken_definition_is_refused(self, sleep):
        path = os.path.join(self.tmp.name, 'broken.py')
        with open(path, 'w') as f:
            f.write("nodes = {'B': {'lightning_dir': '/tmp/ln', "
                    "'host': '127.0.0.1', 'port': 9735, 'channels': {}}}\n")

        with self.assertRaises(AssertionError):
            Network(network_definition_location=path)
