"""
Assembles the channel topology seen by the lightning nodes into a directed
graph and renders it as a graphviz dot diagram.

Each node only knows about its own channels, so the graph is merged from the
getinfo/listfunds responses of every node. Peers that only show up as channel
counterparties are added with the alias 'Unknown'.
"""
import logging
from typing import Dict

import networkx as nx

from regtestgraph.lib.errors import MissingField
from regtestgraph.lib.network_components import channel_snapshots
from regtestgraph.lib.node_config_templates import (
    dot_header_template,
    dot_node_template,
    dot_edge_template,
    dot_legend_template,
    dot_node_label_template,
    dot_edge_label_template,
)
from regtestgraph.lib.utils import parse_msat, unwrap_result

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

UNKNOWN_ALIAS = 'Unknown'
UNKNOWN_STATE = 'unknown'
ACTIVE_STATE = 'active'
SHORT_ID_LENGTH = 8

DOT_STYLE = {
    'background': '#ffffff',
    'node_fill': '#88c0d0:#5e81ac',
    'edge_color': '#a3be8c',
}


def _escape(label):
    return label.replace('\\', '\\\\').replace('"', '\\"')


class NetworkGraph(object):
    """
    Directed graph of lightning nodes (vertices) and channels (edges).

    Vertices are indexed by integers in the order they were added; the
    mapping from node public keys to those indices is kept in node_indices.
    """

    def __init__(self):
        self.graph = nx.MultiDiGraph()
        self.node_indices: Dict[str, int] = {}
        self.node_capacities: Dict[str, int] = {}
        self.node_states: Dict[str, str] = {}

    @property
    def node_count(self):
        return self.graph.number_of_nodes()

    @property
    def edge_count(self):
        return self.graph.number_of_edges()

    def capacity(self, node_id):
        return self.node_capacities.get(node_id, 0)

    def state(self, node_id):
        return self.node_states.get(node_id, UNKNOWN_STATE)

    def alias(self, node_id):
        return self.graph.nodes[self.node_indices[node_id]]['alias']

    def add_node(self, node_id, alias) -> int:
        """
        Adds a node, if it isn't known yet.

        :param node_id: str: node public key
        :param alias: str
        :return: int: index of the (existing) node
        """
        if node_id in self.node_indices:
            return self.node_indices[node_id]
        index = len(self.node_indices)
        self.graph.add_node(index, node_id=node_id, alias=alias)
        self.node_indices[node_id] = index
        logger.debug("GRAPH: Added node %s (%s) as %d.", alias, node_id, index)
        return index

    def add_channel(self, from_id, to_id, capacity, state=ACTIVE_STATE):
        """
        Adds a directed channel edge between two known nodes.

        Channels referencing unknown nodes are skipped.

        :param from_id: str
        :param to_id: str
        :param capacity: capacity shown on the edge
        :param state: str: channel state shown on the edge
        """
        try:
            source = self.node_indices[from_id]
            target = self.node_indices[to_id]
        except KeyError:
            logger.debug("GRAPH: Skipping channel %s -> %s, unknown node.",
                         from_id, to_id)
            return
        self.graph.add_edge(source, target, capacity=capacity, state=state)

    def update_from_node_info(self, node_info, funds):
        """
        Merges a node and its channels into the graph.

        :param node_info: dict: getinfo response of the node
        :param funds: dict: listfunds response of the node
        :raises MissingField: if id or alias are missing, the graph is left
            untouched in that case
        """
        info = unwrap_result(node_info) or {}
        node_id = info.get('id')
        alias = info.get('alias')
        if node_id is None:
            raise MissingField('node id not found in node info')
        if alias is None:
            raise MissingField('node alias not found in node info')

        channel_list = (unwrap_result(funds) or {}).get('channels')
        # everything that can fail is read before the graph is touched
        channels = channel_snapshots({'channels': channel_list or []})
        if channel_list is not None:
            total_capacity = 0
            for c in channel_list:
                try:
                    total_capacity += parse_msat(c['amount_msat'])
                except (KeyError, TypeError, ValueError):
                    continue
            self.node_capacities[node_id] = total_capacity
            self.node_states[node_id] = ACTIVE_STATE

        index = self.add_node(node_id, alias)
        # nodes learned about as counterparties get their real alias now
        if self.graph.nodes[index]['alias'] == UNKNOWN_ALIAS:
            self.graph.nodes[index]['alias'] = alias

        if channel_list is None:
            return
        for channel in channels:
            self.add_node(channel.peer_id, UNKNOWN_ALIAS)
            self.add_channel(node_id, channel.peer_id, channel.capacity,
                             channel.state)
        logger.info("GRAPH: Merged %s with %d channels.", alias,
                    len(channel_list))

    def node_label(self, index):
        data = self.graph.nodes[index]
        node_id = data['node_id']
        return dot_node_label_template.format(
            alias=_escape(data['alias']),
            short_id=node_id[:SHORT_ID_LENGTH],
            capacity=self.capacity(node_id),
            state=_escape(self.state(node_id)),
        )

    def to_dot(self):
        """
        Renders the graph in the graphviz dot language.

        :return: str
        """
        dot = dot_header_template.format(**DOT_STYLE)
        for index in self.graph.nodes:
            dot += dot_node_template.format(
                index=index, label=self.node_label(index))
        for source, target, data in self.graph.edges(data=True):
            label = dot_edge_label_template.format(
                capacity=data['capacity'], state=_escape(data['state']))
            dot += dot_edge_template.format(
                source=source, target=target, label=label)
        dot += dot_legend_template
        return dot

    def write_dot(self, path):
        """
        Writes the dot diagram to a file.

        :param path: str
        """
        with open(path, 'w') as f:
            f.write(self.to_dot())
        logger.info("GRAPH: Wrote %d nodes and %d channels to %s.",
                    self.node_count, self.edge_count, path)
