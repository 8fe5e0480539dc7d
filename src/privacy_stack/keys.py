# src/privacy_stack/keys.py
from __future__ import annotations

import base64
import binascii
import os
import secrets
import subprocess
from pathlib import Path
from typing import Optional

from . import system
from .config import Paths
from .errors import KeyMaterialError
from .logging_utils import get_logger
from .models import KeyPair, PresharedSecret, Role

log = get_logger(__name__)

KEY_LEN = 32


# ---------- Key generation (wg(8)) ----------

def _wg(*args: str, input: Optional[str] = None) -> str:
    try:
        return system.run_cmd(["wg", *args], input=input).stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        raise KeyMaterialError(f"wg {' '.join(args)} failed: {exc}") from exc


def generate_private_key() -> str:
    return _wg("genkey")


def private_to_public(private_key: str) -> str:
    # pubkey reads the private key on stdin
    return _wg("pubkey", input=private_key + "\n")


def generate_preshared_key() -> str:
    return _wg("genpsk")


def validate_key(text: str, path: Path) -> str:
    key = text.strip()
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyMaterialError(f"{path} does not contain a base64 key") from exc
    if len(raw) != KEY_LEN:
        raise KeyMaterialError(f"{path} holds a {len(raw)}-byte key, expected {KEY_LEN}")
    return key


# ---------- Secret files ----------

def ensure_private_dir(path: Path) -> None:
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.chmod(0o700)


def write_secret_file(path: Path, content: str, mode: int = 0o600) -> None:
    """
    Write ``content`` so that ``path`` is never readable by anyone but the owner.

    The temporary file is created with its final mode (O_EXCL, umask 077), then
    renamed over ``path``; a crash leaves either the old file or the new one.
    """
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    old_umask = os.umask(0o077)
    try:
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    finally:
        os.umask(old_umask)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


# ---------- KeyMaterialManager ----------

class KeyMaterialManager:
    """
    Reuse-or-generate for WireGuard keys.

    A key is looked up at a path derived from (role, name). If the private key
    file exists it is reused and the public key is re-derived from it;
    otherwise a fresh key is generated and persisted before being returned.
    """

    def __init__(self, paths: Paths, interface: str):
        self.paths = paths
        self.interface = interface

    def private_key_path(self, role: Role, name: str) -> Path:
        if role is Role.SERVER:
            return self.paths.server_key(self.interface)
        return self.paths.client_key(name)

    def public_key_path(self, role: Role, name: str) -> Path:
        return self.private_key_path(role, name).with_suffix(".pub")

    def preshared_path(self, name: str) -> Path:
        return self.paths.client_psk(name)

    def ensure_keypair(self, role: Role, name: str) -> KeyPair:
        priv_path = self.private_key_path(role, name)
        pub_path = self.public_key_path(role, name)

        if priv_path.exists():
            private_key = validate_key(priv_path.read_text(encoding="utf-8"), priv_path)
            public_key = validate_key(private_to_public(private_key), pub_path)
            stored = pub_path.read_text(encoding="utf-8").strip() if pub_path.exists() else None
            if stored != public_key:
                if stored is None:
                    log.warning("%s missing, deriving it from %s", pub_path, priv_path)
                else:
                    log.warning("%s does not match %s, rewriting it", pub_path, priv_path)
                write_secret_file(pub_path, public_key + "\n")
            log.info("Reusing existing %s key for '%s' (%s)", role.value, name, priv_path)
            return KeyPair(role, name, private_key, public_key)

        private_key = validate_key(generate_private_key(), priv_path)
        public_key = validate_key(private_to_public(private_key), pub_path)
        ensure_private_dir(priv_path.parent)
        write_secret_file(priv_path, private_key + "\n")
        write_secret_file(pub_path, public_key + "\n")
        log.info("Generated new %s key for '%s' (%s)", role.value, name, priv_path)
        return KeyPair(role, name, private_key, public_key)

    def ensure_preshared(self, name: str) -> PresharedSecret:
        path = self.preshared_path(name)

        if path.exists():
            log.info("Reusing existing preshared key for '%s'", name)
            return PresharedSecret(name, validate_key(path.read_text(encoding="utf-8"), path))

        value = validate_key(generate_preshared_key(), path)
        ensure_private_dir(path.parent)
        write_secret_file(path, value + "\n")
        log.info("Generated new preshared key for '%s'", name)
        return PresharedSecret(name, value)
