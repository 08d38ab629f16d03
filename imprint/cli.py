"""
Command line tooling for creators: key generation, registration, verification
and signature-authorized deletion.
"""

import argparse
import json
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

import requests
import structlog
from dotenv import load_dotenv

from imprint import __version__, config
from imprint.client import ImprintClient
from imprint.core.errors import KeyGenerationError, ProvenanceError
from imprint.core.utils import configure_logging
from imprint.models.record import LICENSE_OPTIONS, PolicyChoice, ProvenanceRecord, RecordCreate, UsagePolicy
from imprint.models.similarity import MatchStatus
from imprint.services.fingerprint import content_hash
from imprint.services.identity import generate_key_pair, load_key_pair, public_key_to_did_key, save_key_pair
from imprint.services.image_hash import optional_perceptual_hash
from imprint.services.provenance import build_signed_record, verify_content, verify_record_signature
from imprint.services.signing import DELETE_ACTION, sign_action

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PERCEPTUAL_LEAD = 2


def _guess_content_type(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _choice(value: str) -> PolicyChoice:
    return PolicyChoice.ALLOWED if value == "allowed" else PolicyChoice.DENIED


def _load_record(path: str) -> RecordCreate:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if "id" in raw:
        return ProvenanceRecord(**raw)
    return RecordCreate(**raw)


def cmd_keygen(args) -> int:
    key_pair = generate_key_pair()
    if args.output:
        output = Path(args.output)
        if output.exists() and not args.force:
            print(f"Refusing to overwrite {output} (use --force)", file=sys.stderr)
            return EXIT_FAILED
        save_key_pair(key_pair, output)
        print(f"Identity: {key_pair.creator_id}")
        print(f"Keypair written to {output}. Keep it safe; it cannot be recovered.")
    else:
        print(json.dumps(key_pair.to_file_dict(), indent=2))
    return EXIT_OK


def cmd_did(args) -> int:
    print(public_key_to_did_key(args.public_key))
    return EXIT_OK


def cmd_register(args) -> int:
    path = Path(args.file)
    content = path.read_bytes()
    key_pair = load_key_pair(args.key)

    policy = UsagePolicy(
        license=args.license,
        ai_training=_choice(args.ai_training),
        ai_derivative_generation=_choice(args.ai_derivatives),
        commercial_use=_choice(args.commercial_use),
        attribution_required=not args.no_attribution,
        policy_note=args.policy_note,
    )
    record = build_signed_record(
        content,
        key_pair,
        title=args.title,
        display_name=args.display_name,
        usage_policy=policy,
        file_name=path.name,
        content_type=args.content_type or _guess_content_type(path),
        description=args.description,
        include_perceptual_hash=not args.no_perceptual_hash,
    )

    record_json = record.model_dump(mode="json")
    if not args.offline:
        client = ImprintClient(args.server)
        record_id = client.create_record(record)
        record_json = {"id": record_id, **record_json}
        print(f"Registered record {record_id}")

    if args.output:
        Path(args.output).write_text(json.dumps(record_json, indent=2), encoding="utf-8")
        print(f"Signed record written to {args.output}")
    elif args.offline:
        print(json.dumps(record_json, indent=2))

    print(f"Content hash: {record.content_hash}")
    if record.perceptual_hash:
        print(f"Perceptual hash: {record.perceptual_hash}")
    print(f"Identity: {record.creator_id}")
    return EXIT_OK


def _verify_against_record(content: bytes, record_path: str) -> int:
    record = _load_record(record_path)
    result = verify_content(content, record)
    print(f"Content hash: {result.status.value}")
    print(f"Signature: {'valid' if result.signature_valid else 'INVALID'}")
    if result.verified:
        print(f"Verified: '{record.title}' by {record.display_name} ({record.creator_id})")
        return EXIT_OK
    return EXIT_FAILED


def _verify_against_server(content: bytes, path: Path, server: Optional[str], use_perceptual: bool) -> int:
    digest = content_hash(content)
    phash = optional_perceptual_hash(content, _guess_content_type(path)) if use_perceptual else None

    response = ImprintClient(server).verify(digest, perceptual_hash=phash)
    print(response.message)
    if response.status == MatchStatus.NOT_FOUND.value:
        return EXIT_FAILED

    any_valid = False
    for match in response.matches:
        # never trust a remote verdict; recheck the signature locally
        record = match.record
        valid = verify_record_signature(record)
        any_valid = any_valid or valid
        distance = f" distance={match.hamming_distance}" if match.hamming_distance is not None else ""
        print(f"- {record.id} '{record.title}' by {record.display_name} "
              f"signed {record.signed_at} [{match.match_type}{distance}] "
              f"signature {'valid' if valid else 'INVALID'} license {record.usage_policy.license}")

    if not any_valid:
        return EXIT_FAILED
    if response.status == MatchStatus.PERCEPTUAL_MATCH.value:
        return EXIT_PERCEPTUAL_LEAD
    return EXIT_OK


def cmd_verify(args) -> int:
    path = Path(args.file)
    content = path.read_bytes()
    if args.record:
        return _verify_against_record(content, args.record)
    return _verify_against_server(content, path, args.server, not args.no_perceptual_hash)


def cmd_delete(args) -> int:
    key_pair = load_key_pair(args.key)
    authorization = sign_action(DELETE_ACTION, args.record_id, key_pair.private_key)
    result = ImprintClient(args.server).delete_record(authorization, verify_only=args.verify_only)
    if result.get("verified"):
        print(f"Authorization verified for {args.record_id}; nothing was deleted")
    else:
        print(f"Deleted record {args.record_id}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imprint", description="Signed content provenance records")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate a new Ed25519 identity")
    keygen.add_argument("-o", "--output", help="Keypair file to write (prints to stdout otherwise)")
    keygen.add_argument("--force", action="store_true", help="Overwrite an existing keypair file")
    keygen.set_defaults(func=cmd_keygen)

    did = subparsers.add_parser("did", help="Print the did:key identity for a public key")
    did.add_argument("public_key", help="Ed25519 public key, 64 hex characters")
    did.set_defaults(func=cmd_did)

    register = subparsers.add_parser("register", help="Sign a file's provenance record")
    register.add_argument("file")
    register.add_argument("--key", required=True, help="Keypair file")
    register.add_argument("--title", required=True)
    register.add_argument("--display-name", required=True)
    register.add_argument("--description")
    register.add_argument("--content-type", help="Override the guessed MIME type")
    register.add_argument("--license", choices=LICENSE_OPTIONS, default="ALL_RIGHTS_RESERVED")
    for flag in ("--ai-training", "--ai-derivatives", "--commercial-use"):
        register.add_argument(flag, choices=["allowed", "denied"], default="denied")
    register.add_argument("--no-attribution", action="store_true", help="Attribution not required")
    register.add_argument("--policy-note", default="")
    register.add_argument("--no-perceptual-hash", action="store_true")
    register.add_argument("--output", help="Write the signed record JSON here")
    target = register.add_mutually_exclusive_group()
    target.add_argument("--server", help=f"Server URL (default {config.SERVER_URL})")
    target.add_argument("--offline", action="store_true", help="Sign locally without submitting")
    register.set_defaults(func=cmd_register)

    verify = subparsers.add_parser("verify", help="Check a file against registered provenance")
    verify.add_argument("file")
    verify.add_argument("--no-perceptual-hash", action="store_true")
    source = verify.add_mutually_exclusive_group()
    source.add_argument("--record", help="Signed record JSON to check against, offline")
    source.add_argument("--server", help=f"Server URL (default {config.SERVER_URL})")
    verify.set_defaults(func=cmd_verify)

    delete = subparsers.add_parser("delete", help="Delete a record with a fresh signed authorization")
    delete.add_argument("record_id")
    delete.add_argument("--key", required=True, help="Keypair file of the record's creator")
    delete.add_argument("--verify-only", action="store_true", help="Check the authorization without deleting")
    delete.add_argument("--server", help=f"Server URL (default {config.SERVER_URL})")
    delete.set_defaults(func=cmd_delete)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(json_logs=False, level="INFO" if args.verbose else "WARNING")

    try:
        return args.func(args)
    except KeyGenerationError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        return EXIT_FAILED
    except ProvenanceError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return EXIT_FAILED
    except requests.RequestException as e:
        logger.error("Server request failed", error=str(e))
        print(f"Server request failed: {e}", file=sys.stderr)
        return EXIT_FAILED
    except (OSError, ValueError) as e:
        # unreadable files, bad JSON and invalid record fields
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
