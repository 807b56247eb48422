"""
Two core lightning nodes with a single channel from A to B, each running
with its own lightning directory:

    lightningd --network=regtest --lightning-dir=~/.lightning --addr=127.0.0.1:9735
    lightningd --network=regtest --lightning-dir=~/.lightning2 --addr=127.0.0.1:9736
"""
nodes = {
    'A': {
        'lightning_dir': '~/.lightning',
        'host': '127.0.0.1',
        'port': 9735,
        'channels': {
            1: {
                'to': 'B',
                'capacity': 1000000,
            },
        }
    },
    'B': {
        'lightning_dir': '~/.lightning2',
        'host': '127.0.0.1',
        'port': 9736,
        'channels': {
        }
    },
}
