"""Storage utilities for persisting serialized credentials."""

import os
from pathlib import Path
from typing import Optional

from platformdirs import user_data_dir


APP_NAME = "twofactor"
APP_AUTHOR = "twofactor"
DATA_DIR_ENV = "TWOFACTOR_DATA_DIR"
SUFFIX = ".totp"


def get_storage_dir() -> Path:
    """
    Get the directory holding credential files.

    ``TWOFACTOR_DATA_DIR`` overrides the cross-platform appdata directory.

    Returns:
        Path to the storage directory.
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override)
    return Path(user_data_dir(APP_NAME, APP_AUTHOR))


def get_credential_path(name: Optional[str] = None) -> Path:
    """
    Get the file path for a credential by name.

    Args:
        name: Credential name (default: "default").

    Returns:
        Path to the credential file.
    """
    credential_name = name or "default"
    return get_storage_dir() / f"{credential_name}{SUFFIX}"


def save_credential(data: bytes, name: Optional[str] = None) -> None:
    """
    Save a serialized credential to disk.

    Args:
        data: Output of ``TOTP.to_bytes()``.
        name: Credential name (default: "default").
    """
    credential_path = get_credential_path(name)
    credential_path.parent.mkdir(parents=True, exist_ok=True)

    # Write atomically using a temporary file
    temp_path = credential_path.with_suffix(".tmp")
    temp_path.write_bytes(data)
    os.chmod(temp_path, 0o600)
    temp_path.replace(credential_path)


def load_credential(name: Optional[str] = None) -> bytes:
    """
    Load a serialized credential from disk.

    Args:
        name: Credential name (default: "default").

    Returns:
        The stored bytes, to be passed to ``TOTP.from_bytes()``.

    Raises:
        FileNotFoundError: If the credential file does not exist.
    """
    credential_path = get_credential_path(name)
    if not credential_path.exists():
        credential_name = name or "default"
        raise FileNotFoundError(
            f"Credential '{credential_name}' not found at {credential_path}. "
            "Create one first using 'twofactor new'."
        )
    return credential_path.read_bytes()


def delete_credential(name: Optional[str] = None) -> None:
    """
    Remove a stored credential.

    Raises:
        FileNotFoundError: If the credential file does not exist.
    """
    credential_path = get_credential_path(name)
    if not credential_path.exists():
        raise FileNotFoundError(f"Credential '{name or 'default'}' not found")
    credential_path.unlink()


def list_credentials() -> list[str]:
    """
    List all stored credential names.

    Returns:
        Sorted credential names (without extension).
    """
    storage_dir = get_storage_dir()
    if not storage_dir.exists():
        return []
    return sorted(path.stem for path in storage_dir.glob(f"*{SUFFIX}"))
