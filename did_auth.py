"""Command line interface for the DID challenge-response authentication service."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path

from didauth.auth import AuthenticationService
from didauth.challenge import generate_challenge
from didauth.config import Settings
from didauth.constants import DEFAULT_NAMESPACE, did_pattern
from didauth.crypto import (
    KeyEncoding,
    derive_verification_address,
    generate_private_key,
    public_key_from_private,
    sign_message,
)
from didauth.errors import ConfigError, DIDAuthError, ErrorKind
from didauth.store import IdentityRegistry

DEFAULT_REGISTRY = Path("identities.json")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--registry",
        default=str(DEFAULT_REGISTRY),
        help="Location of the JSON identity registry (default: identities.json)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen_parser = subparsers.add_parser("keygen", help="Generate a secp256k1 key pair")
    keygen_parser.add_argument(
        "--encoding",
        choices=[encoding.value for encoding in KeyEncoding],
        default=KeyEncoding.UNCOMPRESSED.value,
        help="Public key encoding to print (default: uncompressed)",
    )

    register_parser = subparsers.add_parser("register", help="Register a public key in the registry")
    register_parser.add_argument("public_key", help="Hex-encoded public key")
    register_parser.add_argument(
        "--did",
        help="DID to register. If omitted a fresh did:<namespace>:<uuid4> is generated.",
    )

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a registered DID")
    revoke_parser.add_argument("did")

    challenge_parser = subparsers.add_parser("challenge", help="Print a login challenge for a DID")
    challenge_parser.add_argument("did")

    sign_parser = subparsers.add_parser("sign", help="Sign a challenge with a private key")
    sign_parser.add_argument("private_key", help="Hex-encoded private key")
    message_group = sign_parser.add_mutually_exclusive_group(required=True)
    message_group.add_argument("--message", help="Message text to sign")
    message_group.add_argument("--message-file", help="File holding the message to sign")

    login_parser = subparsers.add_parser(
        "login",
        help="Run the full challenge/sign/login flow against the registry",
    )
    login_parser.add_argument("did")
    login_parser.add_argument("private_key", help="Hex-encoded private key")

    verify_parser = subparsers.add_parser("verify", help="Verify a session token")
    verify_parser.add_argument("token")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=3001)
    serve_parser.add_argument(
        "--use-registry",
        action="store_true",
        help="Answer identity lookups from the JSON registry instead of the ledger",
    )

    return parser.parse_args(argv)


def load_registry(path: str) -> IdentityRegistry:
    return IdentityRegistry(path, namespace=os.environ.get("DID_NAMESPACE", DEFAULT_NAMESPACE))


def require_did(did: str) -> str:
    namespace = os.environ.get("DID_NAMESPACE", DEFAULT_NAMESPACE)
    if not did_pattern(namespace).fullmatch(did):
        raise DIDAuthError(ErrorKind.INVALID_INPUT, f"Malformed DID: {did}")
    return did


def _settings_with_registry(path: str) -> Settings:
    return dataclasses.replace(Settings.from_env(), registry_path=path)


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2))


def run(namespace: argparse.Namespace) -> int:
    if namespace.command == "keygen":
        private_key = generate_private_key()
        public_key = public_key_from_private(private_key, KeyEncoding(namespace.encoding))
        _emit(
            {
                "private_key": private_key.hex(),
                "public_key": public_key,
                "address": derive_verification_address(public_key_from_private(private_key)),
            }
        )
        return 0

    if namespace.command == "register":
        record = load_registry(namespace.registry).register(namespace.public_key, identity=namespace.did)
        _emit(record.to_dict())
        return 0

    if namespace.command == "revoke":
        _emit(load_registry(namespace.registry).revoke(namespace.did).to_dict())
        return 0

    if namespace.command == "challenge":
        did = require_did(namespace.did)
        _emit({"challenge": generate_challenge(did), "identity": did})
        return 0

    if namespace.command == "sign":
        if namespace.message_file:
            message = Path(namespace.message_file).read_text(encoding="utf-8")
        else:
            message = namespace.message
        _emit({"signature": sign_message(message, namespace.private_key)})
        return 0

    if namespace.command == "login":
        service = AuthenticationService.from_settings(_settings_with_registry(namespace.registry))
        challenge = service.issue_challenge(namespace.did)
        signature = sign_message(challenge, namespace.private_key)
        credential = service.login(namespace.did, signature, challenge)
        _emit({"challenge": challenge, **credential.to_dict()})
        return 0

    if namespace.command == "verify":
        service = AuthenticationService.from_settings(_settings_with_registry(namespace.registry))
        claims = service.verify_credential(namespace.token)
        _emit(
            {
                "identity": claims.identity,
                "publicKey": claims.public_key,
                "type": claims.token_type,
                "issuedAt": claims.issued_at,
                "expiry": claims.expires_at,
            }
        )
        return 0

    if namespace.command == "serve":
        import uvicorn

        from didauth.server import create_app

        if namespace.use_registry:
            settings = _settings_with_registry(namespace.registry)
        else:
            settings = Settings.from_env()
        uvicorn.run(create_app(settings), host=namespace.host, port=namespace.port)
        return 0

    raise RuntimeError("Unreachable")


def main(argv: list[str] | None = None) -> int:
    namespace = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=namespace.log_level.upper(), format="%(levelname)s %(name)s %(message)s")
    try:
        return run(namespace)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    except DIDAuthError as exc:
        print(f"{exc.kind.value}: {exc.detail}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
