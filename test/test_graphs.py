"""
Tests for the predefined network definitions and the definition checks.
"""
import copy
from unittest import TestCase

from regtestgraph.lib.graph_testing import graph_test

from regtestgraph.network_definitions import (
    two_peers,
    triangle,
)


class GraphTests(TestCase):
    """
    Tests shapes of several predefined graphs.
    """
    def test_two_peers(self):
        graph_test(two_peers.nodes)

    def test_triangle(self):
        graph_test(triangle.nodes)


class BrokenDefinitionTests(TestCase):
    """
    Tests that definitions breaking the convention are refused.
    """
    def setUp(self):
        self.nodes = copy.deepcopy(triangle.nodes)

    def test_missing_field(self):
        del self.nodes['B']['port']
        with self.assertRaises(ValueError):
            graph_test(self.nodes)

    def test_node_names_not_alphabetical(self):
        self.nodes['D'] = self.nodes.pop('C')
        self.nodes['A']['channels'][3]['to'] = 'D'
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_duplicate_channel_number(self):
        self.nodes['C']['channels'][1] = self.nodes['C']['channels'].pop(3)
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_channel_to_undefined_node(self):
        self.nodes['A']['channels'][1]['to'] = 'Z'
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_channel_to_itself(self):
        self.nodes['A']['channels'][1]['to'] = 'A'
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_channel_without_capacity(self):
        self.nodes['B']['channels'][2]['capacity'] = 0
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_shared_port(self):
        self.nodes['C']['port'] = self.nodes['A']['port']
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)

    def test_shared_lightning_dir(self):
        self.nodes['B']['lightning_dir'] = self.nodes['A']['lightning_dir']
        with self.assertRaises(AssertionError):
            graph_test(self.nodes)
