# keygen.py
"""
Generates the two independent credentials the updater needs: one key that
authenticates randomness and one that pays for gas.

    python -m drand_updater.keygen >> updater.env
"""
import sys

from eth_account import Account


def generate_keys() -> dict:
    signer = Account.create()
    sender = Account.create()
    while sender.key == signer.key:
        sender = Account.create()
    return {
        'signer': {'address': signer.address, 'private_key': signer.key.hex()},
        'sender': {'address': sender.address, 'private_key': sender.key.hex()},
    }


def main(out=sys.stdout):
    keys = generate_keys()
    print(f"# Signer address (register as the oracle's trusted signer): {keys['signer']['address']}", file=out)
    print(f"SIGNER_PRIVATE_KEY={keys['signer']['private_key']}", file=out)
    print(f"# Sender address (fund with gas): {keys['sender']['address']}", file=out)
    print(f"SENDER_PRIVATE_KEY={keys['sender']['private_key']}", file=out)
    return keys


if __name__ == '__main__':
    main()
