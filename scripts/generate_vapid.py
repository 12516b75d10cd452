"""
Create the VAPID key pair used to sign reminder pushes.

    python scripts/generate_vapid.py                 # print the keys
    python scripts/generate_vapid.py --env-file .env # write them into .env

Existing keys in the env file are kept unless --force is given, since
rotating them silently invalidates every browser subscription.
"""
import argparse
import base64
import os

from cryptography.hazmat.primitives.asymmetric import ec
from dotenv import dotenv_values, set_key


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def generate_vapid_keys():
    # VAPID keys live on P-256
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")

    numbers = private_key.public_key().public_numbers()
    public_bytes = b"\x04" + numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big")

    return {
        "publicKey": b64url(public_bytes),
        "privateKey": b64url(private_bytes),
    }


def write_env_file(path, keys, subject=None, force=False):
    """Store the keys in an env file. Returns False when keys were already there."""
    existing = dotenv_values(path) if os.path.exists(path) else {}
    if existing.get("VAPID_PUBLIC_KEY") and existing.get("VAPID_PRIVATE_KEY") and not force:
        return False
    if not os.path.exists(path):
        open(path, "a").close()
    set_key(path, "VAPID_PUBLIC_KEY", keys["publicKey"])
    set_key(path, "VAPID_PRIVATE_KEY", keys["privateKey"])
    if subject:
        set_key(path, "VAPID_SUBJECT", subject)
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate VAPID keys for reminder pushes.")
    parser.add_argument("--env-file", help="write the keys into this env file")
    parser.add_argument("--subject", help="contact for the push service, e.g. mailto:you@example.com")
    parser.add_argument("--force", action="store_true", help="replace keys already in the env file")
    args = parser.parse_args(argv)

    keys = generate_vapid_keys()
    if args.env_file:
        if write_env_file(args.env_file, keys, subject=args.subject, force=args.force):
            print(f"Wrote VAPID keys to {args.env_file}")
        else:
            print(f"{args.env_file} already has VAPID keys; use --force to replace them")
        return 0

    print(f"VAPID_PUBLIC_KEY={keys['publicKey']}")
    print(f"VAPID_PRIVATE_KEY={keys['privateKey']}")
    print(f"VAPID_SUBJECT={args.subject or 'mailto:you@example.com'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
