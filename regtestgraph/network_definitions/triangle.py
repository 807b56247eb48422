"""
Implements a lightning network topology:

    A --1--> B --2--> C
    ^                 |
    +-------3---------+
"""
nodes = {
    'A': {
        'lightning_dir': '~/.lightning',
        'host': '127.0.0.1',
        'port': 9735,
        'channels': {
            1: {
                'to': 'B',
                'capacity': 2000000,
            },
        }
    },
    'B': {
        'lightning_dir': '~/.lightning2',
        'host': '127.0.0.1',
        'port': 9736,
        'channels': {
            2: {
                'to': 'C',
                'capacity': 1500000,
            },
        }
    },
    'C': {
        'lightning_dir': '~/.lightning3',
        'host': '127.0.0.1',
        'port': 9737,
        'channels': {
            3: {
                'to': 'A',
                'capacity': 1000000,
            },
        }
    },
}
