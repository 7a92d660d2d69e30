import base64
import binascii
import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from elgamal import DomainParameters
from errors import ConfigurationError

# SQLite file location for the grant/audit/file store
DATA_DIR = Path("./data")
LOG_DIR = Path("./logs")
DEFAULT_DB_URL = f"sqlite:///{(DATA_DIR / 'health_crypto.db').resolve()}"

# RFC 3526 group 14: 2048-bit safe prime, generator 2
RFC3526_MODP_2048 = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3DC2007CB8A163BF05"
    "98DA48361C55D39A69163FA8FD24CF5F83655D23DCA3AD961C62F356208552BB"
    "9ED529077096966D670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9DE2BCBF695581718"
    "3995497CEA956AE515D2261898FA051015728E5A8AACAA68FFFFFFFFFFFFFFFF"
)
RFC3526_GENERATOR = 2

DEFAULT_MIN_MODULUS_BITS = 2048
DEFAULT_SINGLE_BLOCK_THRESHOLD = 200

AUDIT_LOGGER_NAME = "HEALTH_CRYPTO_AUDIT"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, loaded once at start-up and passed explicitly."""

    database_url: str = DEFAULT_DB_URL
    data_dir: Path = DATA_DIR
    log_dir: Path = LOG_DIR
    modulus_hex: str = RFC3526_MODP_2048
    generator: int = RFC3526_GENERATOR
    min_modulus_bits: int = DEFAULT_MIN_MODULUS_BITS
    single_block_threshold: int = DEFAULT_SINGLE_BLOCK_THRESHOLD
    encryption_key: Optional[bytes] = None
    log_level: str = "INFO"

    def domain_parameters(self) -> DomainParameters:
        try:
            p = int(self.modulus_hex, 16)
        except ValueError as e:
            raise ConfigurationError(f"ELGAMAL_P is not a hex integer: {e}") from e
        return DomainParameters(p=p, g=self.generator)


def _decode_encryption_key(raw: Optional[str]) -> Optional[bytes]:
    if not raw:
        return None
    try:
        key = base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise ConfigurationError("ENCRYPTION_KEY must be base64") from e
    if len(key) != 32:
        raise ConfigurationError("ENCRYPTION_KEY must decode to 32 bytes")
    return key


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Read settings from the environment (and an optional .env file)."""
    load_dotenv(env_file)
    data_dir = Path(os.getenv("HEALTH_CRYPTO_DATA_DIR", str(DATA_DIR)))
    default_url = f"sqlite:///{(data_dir / 'health_crypto.db').resolve()}"
    return Settings(
        database_url=os.getenv("HEALTH_CRYPTO_DB_URL", default_url),
        data_dir=data_dir,
        log_dir=Path(os.getenv("HEALTH_CRYPTO_LOG_DIR", str(LOG_DIR))),
        modulus_hex=os.getenv("ELGAMAL_P", RFC3526_MODP_2048),
        generator=_int_env("ELGAMAL_G", RFC3526_GENERATOR),
        min_modulus_bits=_int_env("ELGAMAL_MIN_BITS", DEFAULT_MIN_MODULUS_BITS),
        single_block_threshold=_int_env("SINGLE_BLOCK_THRESHOLD", DEFAULT_SINGLE_BLOCK_THRESHOLD),
        encryption_key=_decode_encryption_key(os.getenv("ENCRYPTION_KEY")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings) -> logging.Logger:
    """Set up the rotating application log and the separate audit log.

    Returns the audit logger. Safe to call more than once.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    if not any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        file_handler = RotatingFileHandler(
            settings.log_dir / "app.log", maxBytes=10240000, backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s"
        ))
        root.addHandler(file_handler)
    root.setLevel(settings.log_level)

    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if not audit_logger.handlers:
        audit_handler = RotatingFileHandler(
            settings.log_dir / "audit.log", maxBytes=10240000, backupCount=20
        )
        audit_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
        audit_logger.addHandler(audit_handler)
        audit_logger.setLevel(logging.INFO)
        audit_logger.propagate = False
    return audit_logger
