#!/usr/bin/env python3
"""
Create the signing key for ProteLab session tokens.

Without arguments the key is printed for copying into .env; with
--env-file it is written there directly, replacing any previous value.
Rotating the key invalidates every token already issued.
"""

import argparse
import secrets
from pathlib import Path

from dotenv import set_key

KEY_NAME = "JWT_SECRET_KEY"
KEY_BYTES = 48


def main():
    parser = argparse.ArgumentParser(description="Generate the ProteLab token signing key.")
    parser.add_argument("--env-file", help="write the key into this .env file instead of printing it")
    args = parser.parse_args()

    secret_key = secrets.token_urlsafe(KEY_BYTES)

    if args.env_file:
        env_path = Path(args.env_file)
        env_path.touch(exist_ok=True)
        set_key(str(env_path), KEY_NAME, secret_key, quote_mode="never")
        print(f"[keys] {KEY_NAME} written to {env_path} (existing sessions are now invalid)")
        return

    print(f"{KEY_NAME}={secret_key}")
    print("# paste into .env, or rerun with --env-file .env")


if __name__ == "__main__":
    main()
