"""
Module can be used to check if network definitions are defined in the correct
convention.
"""

from typing import Dict

REQUIRED_NODE_FIELDS = ('lightning_dir', 'host', 'port', 'channels')


def graph_test(nodes):
    """
    Tests if a network definition was defined in a certain convention.

    :param nodes: nodes definition
    :type nodes: dict
    """
    test_required_fields(nodes)
    channel_numbers = sorted(get_channel_numbers(nodes))

    test_node_names_alphabetical(nodes)
    test_channel_numbers_unique(channel_numbers)
    test_channel_targets(nodes)
    test_ports(nodes)
    test_lightning_dirs(nodes)


def test_required_fields(nodes: Dict[str, Dict]):
    for node_name, node_data in nodes.items():
        missing = [f for f in REQUIRED_NODE_FIELDS if f not in node_data]
        if missing:
            raise ValueError(
                f"Node {node_name} misses fields {missing} in its definition.")


def get_channel_numbers(nodes):
    """
    Extracts channel numbers from network definition.

    :param nodes: nodes definintion
    :type nodes: dict
    :return: channel numbers
    :rtype: list(int)
    """
    channels = []
    for node_name, node_data in nodes.items():
        channels.extend(node_data['channels'].keys())
    return channels


def test_node_names_alphabetical(nodes):
    """
    Tests if the names of the nodes were defined in an alpabetical increasing
    order.

    :param nodes: nodes definition
    :type nodes: dict
    """
    node_names = nodes.keys()
    number_nodes = len(node_names)
    alphabet = [str(chr(i)) for i in range(65, 91)]
    node_names_should = alphabet[:number_nodes]
    assert node_names_should == list(node_names),\
        "Node names do not follow convention A, B, C, ..."


def test_channel_numbers_unique(channel_numbers):
    assert len(set(channel_numbers)) == len(channel_numbers), \
        'Channel numbers are not unique.'


def test_channel_targets(nodes):
    """
    Tests that channels point to other defined nodes and carry a positive
    capacity.
    """
    for node_name, node_data in nodes.items():
        for number, channel in node_data['channels'].items():
            assert channel['to'] in nodes, \
                f"Channel {number} points to undefined node {channel['to']}."
            assert channel['to'] != node_name, \
                f"Channel {number} of {node_name} points to itself."
            assert channel['capacity'] > 0, \
                f"Channel {number} needs a positive capacity."


def test_ports(nodes):
    ports = [(n['host'], n['port']) for n in nodes.values()]
    assert len(ports) == len(set(ports)), 'Ports are not unique.'


def test_lightning_dirs(nodes):
    dirs = [n['lightning_dir'] for n in nodes.values()]
    assert len(dirs) == len(set(dirs)), 'Lightning dirs are not unique.'
