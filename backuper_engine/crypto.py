"""
Password-based confidentiality envelope for exported bundles.

Envelope layout::

    b"SMLBENC1" | 16-byte random salt | Fernet token

The Fernet key is derived from the password with PBKDF2-HMAC-SHA256. Fernet
authenticates the ciphertext (HMAC-SHA256), so a wrong password or a damaged
file is detected and never yields garbage plaintext.

Fernet works on whole messages, so both directions hold the full plaintext and
its token in memory. Files above ``MAX_PLAINTEXT_SIZE`` are refused before
they are read.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError
from .filesystem import unlink_best_effort

logger = logging.getLogger(__name__)

ENVELOPE_MAGIC = b"SMLBENC1"
SALT_SIZE = 16
PBKDF2_ITERATIONS = 390_000
ENCRYPTED_PREFIX = "enc_"
MAX_PLAINTEXT_SIZE = 1 << 30
# A Fernet token is base64 of a 57-byte frame around ciphertext padded by at most 16 bytes.
MAX_ENVELOPE_SIZE = len(ENVELOPE_MAGIC) + SALT_SIZE + 4 * ((MAX_PLAINTEXT_SIZE + 16 + 57 + 2) // 3)


def _derive_fernet_key(password: str, salt: bytes) -> bytes:
    """Derive a Fernet key from a password using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))


def encrypt_bytes(plaintext: bytes, password: str) -> bytes:
    """Wrap ``plaintext`` in an envelope keyed by ``password``."""
    if not password:
        raise ValueError("password must not be empty")
    salt = secrets.token_bytes(SALT_SIZE)
    token = Fernet(_derive_fernet_key(password, salt)).encrypt(plaintext)
    return ENVELOPE_MAGIC + salt + token


def decrypt_bytes(envelope: bytes, password: str) -> bytes:
    """
    Open an envelope produced by :func:`encrypt_bytes`.

    Raises
    ------
    DecryptionError
        If the envelope is malformed, the password is wrong, or the token has
        been tampered with.
    """
    header_size = len(ENVELOPE_MAGIC) + SALT_SIZE
    if len(envelope) <= header_size or not envelope.startswith(ENVELOPE_MAGIC):
        raise DecryptionError("Input is not a Backuper encrypted envelope")
    salt = envelope[len(ENVELOPE_MAGIC) : header_size]
    token = envelope[header_size:]
    try:
        return Fernet(_derive_fernet_key(password, salt)).decrypt(token)
    except InvalidToken as exc:
        raise DecryptionError("Wrong password or corrupted envelope") from exc


def default_encrypted_path(path: Path) -> Path:
    """Return the default output path for an encrypted copy of ``path``."""
    return path.with_name(f"{ENCRYPTED_PREFIX}{path.name}")


def _write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with tmp_path.open("wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        unlink_best_effort(tmp_path)


def encrypt_file(path: Path, password: str, output: Path | None = None) -> Path:
    """
    Write an encrypted copy of ``path``.

    Parameters
    ----------
    path:
        Plaintext file. Left unchanged.
    password:
        Non-empty password.
    output:
        Destination; defaults to ``enc_<name>`` beside ``path``.

    Returns
    -------
    pathlib.Path
        The encrypted file.

    Raises
    ------
    OSError
        If reading or writing fails.
    ValueError
        If the password is empty or ``path`` is larger than
        ``MAX_PLAINTEXT_SIZE``.
    """
    size = path.stat().st_size
    if size > MAX_PLAINTEXT_SIZE:
        raise ValueError(f"{path} is too large to encrypt ({size} bytes, limit {MAX_PLAINTEXT_SIZE})")
    target = output if output is not None else default_encrypted_path(path)
    _write_atomic(target, encrypt_bytes(path.read_bytes(), password))
    logger.debug("Encrypted %s -> %s", path, target)
    return target


def decrypt_file(path: Path, password: str, output: Path) -> bool:
    """
    Decrypt ``path`` into ``output``.

    Returns
    -------
    bool
        True on success. False if the password is wrong, the input is not an
        envelope, is larger than ``MAX_ENVELOPE_SIZE``, or cannot be read;
        ``output`` is not created in that case.
    """
    try:
        size = path.stat().st_size
        if size > MAX_ENVELOPE_SIZE:
            raise DecryptionError(f"Envelope is too large ({size} bytes, limit {MAX_ENVELOPE_SIZE})")
        plaintext = decrypt_bytes(path.read_bytes(), password)
    except DecryptionError as exc:
        logger.warning("Cannot decrypt %s: %s", path, exc)
        return False
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return False

    _write_atomic(output, plaintext)
    return True
