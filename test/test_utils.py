from decimal import Decimal
from unittest import TestCase

from regtestgraph.lib.errors import InvalidAmount
from regtestgraph.lib.utils import (
    btc_to_sat, convert_short_channel_id_to_channel_id, format_dict,
    parse_msat, parse_short_channel_id, sat_to_btc_string, unwrap_result
)


class TestUtils(TestCase):
    def test_short_channel_id(self):
        self.assertEqual(
            113249697726464,
            convert_short_channel_id_to_channel_id(103, 1, 0))
        self.assertEqual(113249697726464, parse_short_channel_id('103x1x0'))
        self.assertIsNone(parse_short_channel_id(None))
        self.assertIsNone(parse_short_channel_id(''))

    def test_parse_msat(self):
        self.assertEqual(5000, parse_msat(5000))
        self.assertEqual(5000, parse_msat('5000msat'))
        self.assertEqual(5000, parse_msat('5000'))
        for amount in ('abc', 'msat', True):
            with self.assertRaises(ValueError):
                parse_msat(amount)
        with self.assertRaises(TypeError):
            parse_msat(None)

    def test_btc_to_sat(self):
        self.assertEqual(100000000, btc_to_sat(1))
        self.assertEqual(150000000, btc_to_sat(1.5))
        self.assertEqual(1, btc_to_sat('0.00000001'))
        self.assertEqual(12345, btc_to_sat(Decimal('0.00012345')))
        for amount in (0, -0.5, '0.000000001', 'one', 'inf', None):
            with self.assertRaises(InvalidAmount):
                btc_to_sat(amount)

    def test_sat_to_btc_string(self):
        self.assertEqual('1.00000000', sat_to_btc_string(100000000))
        self.assertEqual('0.00000001', sat_to_btc_string(1))
        self.assertEqual('21.50000000', sat_to_btc_string(2150000000))

    def test_unwrap_result(self):
        self.assertEqual({'id': 'A'}, unwrap_result({'result': {'id': 'A'}}))
        self.assertEqual({'id': 'A'}, unwrap_result({'id': 'A'}))
        self.assertEqual({'result': 5}, unwrap_result({'result': 5}))

    def test_format_dict(self):
        self.assertEqual('{\n    "a": 1\n}', format_dict({'a': 1}))
