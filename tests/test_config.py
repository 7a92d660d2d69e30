import base64
import logging
import os

import pytest

from config import AUDIT_LOGGER_NAME, RFC3526_MODP_2048, Settings, configure_logging, load_settings
from elgamal import DomainParameters
from errors import ConfigurationError


def test_defaults(monkeypatch):
    for name in ("ELGAMAL_P", "ELGAMAL_G", "SINGLE_BLOCK_THRESHOLD", "ENCRYPTION_KEY", "ELGAMAL_MIN_BITS"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings(env_file=os.devnull)
    assert settings.modulus_hex == RFC3526_MODP_2048
    assert settings.generator == 2
    assert settings.single_block_threshold == 200
    assert settings.encryption_key is None


def test_environment_overrides(monkeypatch):
    key = os.urandom(32)
    monkeypatch.setenv("ENCRYPTION_KEY", base64.b64encode(key).decode())
    monkeypatch.setenv("SINGLE_BLOCK_THRESHOLD", "128")
    monkeypatch.setenv("HEALTH_CRYPTO_DB_URL", "sqlite://")
    settings = load_settings(env_file=os.devnull)
    assert settings.encryption_key == key
    assert settings.single_block_threshold == 128
    assert settings.database_url == "sqlite://"


def test_bad_encryption_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", base64.b64encode(b"short").decode())
    with pytest.raises(ConfigurationError):
        load_settings(env_file=os.devnull)


def test_bad_integer(monkeypatch):
    monkeypatch.setenv("ELGAMAL_G", "two")
    with pytest.raises(ConfigurationError):
        load_settings(env_file=os.devnull)


def test_domain_parameters_from_settings():
    params = Settings().domain_parameters()
    assert isinstance(params, DomainParameters)
    assert params.p == int(RFC3526_MODP_2048, 16)
    assert params.max_block_bytes == 255
    with pytest.raises(ConfigurationError):
        Settings(modulus_hex="zz").domain_parameters()


def test_configure_logging_writes_under_log_dir(tmp_path):
    audit = logging.getLogger(AUDIT_LOGGER_NAME)
    root = logging.getLogger()
    saved_audit, saved_root = list(audit.handlers), list(root.handlers)
    for h in saved_audit:
        audit.removeHandler(h)
    for h in saved_root:
        root.removeHandler(h)
    try:
        audit_logger = configure_logging(Settings(log_dir=tmp_path))
        audit_logger.info("grant=1 action=granted")
        for h in audit_logger.handlers:
            h.flush()
        assert audit_logger is audit
        assert audit_logger.propagate is False
        assert "action=granted" in (tmp_path / "audit.log").read_text()
        assert (tmp_path / "app.log").exists()
    finally:
        for h in audit.handlers + root.handlers:
            h.close()
        audit.handlers[:] = saved_audit
        root.handlers[:] = saved_root
