from argparse import ArgumentParser, ArgumentDefaultsHelpFormatter
import logging.config

from regtestgraph.lib.common import BitcoinConfig, logger_config
from regtestgraph.lib.network import Network
from regtestgraph import __version__


def main():
    logging.config.dictConfig(logger_config)
    opts = parse_args()

    bitcoin_config = BitcoinConfig(
        rpc_host=opts.rpc_host,
        rpc_port=opts.rpc_port,
        rpc_user=opts.rpc_user,
        rpc_password=opts.rpc_password,
        network=opts.network,
        bitcoind_path=opts.bitcoind_path or None,
    )
    testnet = Network(
        bitcoin_config=bitcoin_config,
        network_definition_location=opts.network_definition,
        fund_amount=opts.fund_amount,
    )
    testnet.run_once(output=opts.output)


def parse_args():
    defaults = BitcoinConfig()
    parser = ArgumentParser(
        description='regtestgraph',
        formatter_class=ArgumentDefaultsHelpFormatter)
    parser.add_argument(
        '--rpc_host',
        type=str,
        default=defaults.rpc_host,
        help='Host of the bitcoind rpc server.')
    parser.add_argument(
        '--rpc_port',
        type=int,
        default=defaults.rpc_port,
        help='Port of the bitcoind rpc server.')
    parser.add_argument(
        '--rpc_user',
        type=str,
        default=defaults.rpc_user)
    parser.add_argument(
        '--rpc_password',
        type=str,
        default=defaults.rpc_password)
    parser.add_argument(
        '--network',
        type=str,
        default=defaults.network,
        choices=['regtest', 'testnet', 'signet'],
        help='Bitcoin network bitcoind and the lightning nodes run on.')
    parser.add_argument(
        '--bitcoind_path',
        type=str,
        default='',
        help='Location of the bitcoind executable, used if bitcoind is not '
             'running yet. If nothing is specified, a platform default is '
             'taken.')
    parser.add_argument(
        '--network_definition',
        type=str,
        default='two_peers',
        help='Defines the network (either absolute path or module name), '
             'examples can be found in regtestgraph/network_definitions')
    parser.add_argument(
        '--fund_amount',
        type=float,
        default=1.0,
        help='Amount in BTC sent to the wallet of each lightning node.')
    parser.add_argument(
        '--output',
        type=str,
        default='lightning_network.dot',
        help='Path of the generated graphviz dot file.')
    parser.add_argument(
        '--version',
        '-v',
        action='version',
        version="%(prog)s " + __version__)

    return parser.parse_args()
