import json
from decimal import Decimal, InvalidOperation

from bitcoin.core import COIN

from regtestgraph.lib.errors import InvalidAmount


def format_dict(dictionary):
    """
    Formats dicts with indentation.

    :param dictionary: dict
    :return: str
    """
    return json.dumps(dictionary, indent=4, default=str)


def convert_short_channel_id_to_channel_id(blockheight, transaction, output) -> int:
    """
    Converts short channel id (blockheight:transaction:output) to a long integer channel id.

    :param blockheight:
    :param transaction: Number of transaction in the block.
    :param output: Number of output in the transaction.
    :return: channel id: Encoded integer number representing the channel.
    """
    return blockheight << 40 | transaction << 16 | output


def parse_short_channel_id(short_channel_id):
    """
    Converts the core lightning notation of a short channel id (e.g.
    '103x1x0') to the integer representation.

    :param short_channel_id: str
    :return: int or None, if no short channel id is assigned yet
    """
    if not short_channel_id:
        return None
    block, trans, out = map(int, short_channel_id.split('x'))
    return convert_short_channel_id_to_channel_id(block, trans, out)


def parse_msat(amount) -> int:
    """
    Reads a millisatoshi amount as reported by core lightning.

    Older versions report strings like '5000msat', newer ones plain integers.

    :param amount: int or str
    :return: int
    :raises ValueError: if the amount can't be read
    """
    if isinstance(amount, bool):
        raise ValueError(f"not an amount: {amount!r}")
    if isinstance(amount, int):
        return amount
    if isinstance(amount, str):
        amount = amount.strip()
        if amount.endswith('msat'):
            amount = amount[:-len('msat')]
        return int(amount)
    # pyln.client.Millisatoshi and friends
    return int(amount)


def btc_to_sat(amount) -> int:
    """
    Converts an amount given in BTC to satoshis.

    :param amount: float, str or Decimal: amount in BTC
    :return: int: amount in satoshis
    :raises InvalidAmount: if the amount is malformed, not positive or more
        precise than a satoshi
    """
    try:
        btc = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidAmount(f"malformed amount: {amount!r}")
    if not btc.is_finite():
        raise InvalidAmount(f"malformed amount: {amount!r}")

    sat = btc * COIN
    if sat != sat.to_integral_value():
        raise InvalidAmount(f"amount is more precise than a satoshi: {amount}")
    if sat <= 0:
        raise InvalidAmount(f"amount must be positive: {amount}")
    return int(sat)


def sat_to_btc_string(sat: int) -> str:
    """
    Formats satoshis as a BTC string with eight decimals, which bitcoind
    accepts without any floating point conversion.

    :param sat: int
    :return: str
    """
    return '%d.%08d' % divmod(sat, COIN)


# convert to bytes from hex
bfh = bytes.fromhex


def unwrap_result(document):
    """
    Returns the payload of an rpc response document.

    Responses are accepted bare or wrapped in a json-rpc envelope
    ({"result": ...}).

    :param document: dict
    :return: dict
    """
    if isinstance(document, dict) and isinstance(document.get('result'), dict):
        return document['result']
    return document
