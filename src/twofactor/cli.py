"""Command-line interface for twofactor."""

import argparse
import logging
import sys
from typing import Optional, Sequence

from twofactor import storage
from twofactor.counter import remaining_seconds
from twofactor.errors import DecodeError, LockedError, TwoFactorError
from twofactor.hotp import HashAlgorithm
from twofactor.totp import TOTP


logger = logging.getLogger(__name__)


def _load(name: Optional[str]) -> TOTP:
    return TOTP.from_bytes(storage.load_credential(name))


def new_command(args: argparse.Namespace) -> int:
    """Handle the new command."""
    try:
        algorithm = HashAlgorithm.from_name(args.algorithm)
        otp = TOTP.create(args.account, args.issuer, algorithm, args.digits)
        storage.save_credential(otp.to_bytes(), args.name)
    except (TwoFactorError, ValueError, OSError) as e:
        print(f"✗ Failed to create credential: {e}", file=sys.stderr)
        return 1

    print(f"✓ Credential '{args.name or 'default'}' created")
    print(f"  Label: {args.issuer}:{args.account}")
    print(f"  Algorithm: {otp.algorithm.name}, digits: {otp.digits}")
    print(f"  URI: {otp.url()}")
    return 0


def code_command(args: argparse.Namespace) -> int:
    """Handle the code command."""
    try:
        otp = _load(args.name)
        code = otp.otp()
        storage.save_credential(otp.to_bytes(), args.name)
    except FileNotFoundError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except DecodeError as e:
        print(f"✗ Corrupt credential file: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"✗ Failed to save credential state: {e}", file=sys.stderr)
        return 1

    print(code)
    if args.verbose:
        print(f"  valid for {remaining_seconds(otp.step_size)}s", file=sys.stderr)
    return 0


def verify_command(args: argparse.Namespace) -> int:
    """Handle the verify command."""
    try:
        otp = _load(args.name)
    except FileNotFoundError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except DecodeError as e:
        print(f"✗ Corrupt credential file: {e}", file=sys.stderr)
        return 1

    message = None
    try:
        otp.validate(args.code)
    except LockedError:
        message = "Too many attempts, try again later"
    except TwoFactorError as e:
        message = f"Code invalid: {e}"

    if message:
        print(f"✗ {message}", file=sys.stderr)

    try:
        storage.save_credential(otp.to_bytes(), args.name)
    except OSError as e:
        print(f"✗ Failed to save credential state: {e}", file=sys.stderr)
        return 1

    if message:
        return 1

    print("✓ Code valid")
    return 0


def uri_command(args: argparse.Namespace) -> int:
    """Handle the uri command."""
    try:
        otp = _load(args.name)
    except (FileNotFoundError, DecodeError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(otp.url())
    return 0


def list_command(args: argparse.Namespace) -> int:
    """Handle the list command."""
    names = storage.list_credentials()
    if not names:
        print("No credentials found. Create one first using:")
        print("  twofactor new <account> --issuer <issuer>")
        return 0

    print("Available credentials:")
    for name in names:
        try:
            otp = _load(name)
        except DecodeError as e:
            logger.debug("Cannot decode %s: %s", name, e)
            print(f"  {name}: (error loading)")
            continue
        state = "locked" if otp.is_locked() else "open"
        print(f"  {name}: {otp.issuer}:{otp.account} ({otp.algorithm.name}, {state})")
    return 0


def delete_command(args: argparse.Namespace) -> int:
    """Handle the delete command."""
    try:
        storage.delete_credential(args.name)
    except FileNotFoundError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(f"✓ Credential '{args.name or 'default'}' deleted")
    return 0


def _add_name_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--name",
        "-n",
        default=None,
        help='Credential name (default: "default")',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="twofactor",
        description="TOTP two-factor credential manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # New command
    new_parser = subparsers.add_parser(
        "new", aliases=["create"], help="Create a credential with a random key"
    )
    new_parser.add_argument("account", help="Account name, usually an email")
    new_parser.add_argument("--issuer", "-i", required=True, help="Issuer name")
    new_parser.add_argument(
        "--algorithm",
        "-a",
        default="SHA1",
        choices=[a.name for a in HashAlgorithm],
        type=str.upper,
        help="HMAC hash function (default: SHA1)",
    )
    new_parser.add_argument(
        "--digits",
        "-d",
        type=int,
        default=6,
        choices=[6, 7, 8],
        help="Number of digits in the code (default: 6)",
    )
    _add_name_argument(new_parser)

    # Code command
    code_parser = subparsers.add_parser(
        "code", aliases=["gen"], help="Print the current code"
    )
    _add_name_argument(code_parser)

    # Verify command
    verify_parser = subparsers.add_parser(
        "verify", aliases=["check"], help="Verify a code"
    )
    verify_parser.add_argument("code", help="Code entered by the user")
    _add_name_argument(verify_parser)

    # URI command
    uri_parser = subparsers.add_parser("uri", help="Print the provisioning URI")
    _add_name_argument(uri_parser)

    # List command
    subparsers.add_parser("list", aliases=["ls"], help="List stored credentials")

    # Delete command
    delete_parser = subparsers.add_parser(
        "delete", aliases=["rm"], help="Delete a stored credential"
    )
    _add_name_argument(delete_parser)

    return parser


COMMANDS = {
    "new": new_command,
    "create": new_command,
    "code": code_command,
    "gen": code_command,
    "verify": verify_command,
    "check": verify_command,
    "uri": uri_command,
    "list": list_command,
    "ls": list_command,
    "delete": delete_command,
    "rm": delete_command,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.command:
        parser.print_help()
        return 1

    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
