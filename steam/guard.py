# steam/guard.py
import base64
import hashlib
import hmac
import struct

from fulfillment.errors import ConfigError

CODE_CHARS = "23456789BCDFGHJKMNPQRTVWXY"


def generate_auth_code(shared_secret: str, timestamp: int) -> str:
    """Five-character Steam Guard TOTP code for the 30 s window containing `timestamp`."""
    msg = struct.pack(">Q", int(timestamp) // 30)
    digest = hmac.new(base64.b64decode(shared_secret, validate=True), msg, hashlib.sha1).digest()
    start = digest[19] & 0x0F
    value = struct.unpack(">I", digest[start:start + 4])[0] & 0x7FFFFFFF
    code = ""
    for _ in range(5):
        value, idx = divmod(value, len(CODE_CHARS))
        code += CODE_CHARS[idx]
    return code


def generate_confirmation_key(identity_secret: str, timestamp: int, tag: str = "conf") -> str:
    """Base64 HMAC-SHA1 over (big-endian u64 time || tag), keyed with the identity secret."""
    msg = struct.pack(">Q", int(timestamp)) + tag.encode("ascii")
    digest = hmac.new(base64.b64decode(identity_secret, validate=True), msg, hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def device_id(steam_id64: str) -> str:
    """Mobile-authenticator device id derived from the account's steam id."""
    h = hashlib.sha1(str(steam_id64).encode("ascii")).hexdigest()
    return f"android:{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


def check_secrets(shared_secret: str, identity_secret: str, timestamp: int) -> None:
    """Derive one code from each secret so malformed values fail at startup, not mid-trade."""
    for env, secret, derive in (
        ("SHARED_SECRET", shared_secret, generate_auth_code),
        ("IDENTITY_SECRET", identity_secret, generate_confirmation_key),
    ):
        try:
            derive(secret, timestamp)
        except ValueError as e:
            raise ConfigError(f"Malformed {env}: {e}") from e
