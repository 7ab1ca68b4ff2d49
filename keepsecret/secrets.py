import logging
import os.path
import pathlib
import typing

import attr

from .errors import (
    CryptoOperationError,
    DecryptionFailed,
    EncryptionFailed,
    KeepSecretException,
)
from .config import ProjectConfig
from .incantations import EncryptedIncantation, PlaintextIncantation
from .keys import KeyManager
from .redaction import ExampleGenerator, example_path
from .utils import unignored

log = logging.getLogger(__name__)


@attr.s(frozen=True, kw_only=True)
class Secret:
    plaintext: pathlib.Path = attr.ib()
    encrypted: pathlib.Path = attr.ib()

    def __attrs_post_init__(self):
        if self.encrypted.parent != self.plaintext.parent \
                or not self.encrypted.name.startswith(self.plaintext.name) \
                or self.encrypted.name == self.plaintext.name:
            raise CryptoOperationError(
                f"{self.encrypted.name} is not an encrypted copy of {self.plaintext.name}")

    def __str__(self):
        return self.plaintext.name

    @classmethod
    def from_plaintext(cls, path: pathlib.Path, suffix: str) -> 'Secret':
        return cls(plaintext=path, encrypted=path.with_name(path.name + suffix))

    @classmethod
    def from_encrypted(cls, path: pathlib.Path, suffix: str) -> 'Secret':
        if not path.name.endswith(suffix) or path.name == suffix:
            raise CryptoOperationError(f"I don't know how to decrypt {path.name}, it should end in {suffix}")
        return cls(plaintext=path.with_name(path.name[:-len(suffix)]), encrypted=path)

    @property
    def example(self) -> pathlib.Path:
        return example_path(self.plaintext)


Failure = typing.Tuple[pathlib.Path, KeepSecretException]


@attr.s(frozen=True, kw_only=True)
class BatchReport:
    succeeded: typing.List[Secret] = attr.ib(factory=list)
    failed: typing.List[Failure] = attr.ib(factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed


@attr.s(frozen=True, kw_only=True)
class Recipients:
    """Who a file is encrypted for: the stored public key, or a key in the key store."""

    fingerprints: typing.Tuple[str, ...] = attr.ib(default=(), converter=tuple)
    key_files: typing.Tuple[pathlib.Path, ...] = attr.ib(default=(), converter=tuple)


@attr.s(frozen=True)
class SecretKeeper:
    """Encrypts and decrypts a project's secret files with the project key."""

    keys: KeyManager = attr.ib()
    generator: ExampleGenerator = attr.ib(factory=ExampleGenerator)

    @property
    def directory(self) -> pathlib.Path:
        return self.keys.directory

    @property
    def suffix(self) -> str:
        return self.keys.provider.suffix

    def rel(self, path: pathlib.Path) -> str:
        return os.path.relpath(path.as_posix(), self.directory.as_posix())

    def config(self) -> ProjectConfig:
        return self.keys.store.load()

    def resolve(self, path: pathlib.Path) -> pathlib.Path:
        return path if path.is_absolute() else self.directory / path

    def recipients(self, config: ProjectConfig, key: typing.Optional[str] = None) -> Recipients:
        """
        Pick who to encrypt for.

        An explicit key is resolved to its full fingerprint. Otherwise the
        stored public key of the configured project key is used.
        """
        if key:
            return Recipients(fingerprints=[self.keys.resolve_fingerprint(key)])

        key_id = self.keys.require_key(config)
        if self.keys.store.public_key.is_file():
            return Recipients(key_files=[self.keys.store.public_key])
        return Recipients(fingerprints=[self.keys.resolve_fingerprint(key_id)])

    def passphrase(self) -> typing.Optional[str]:
        """Install the private key and ask for its passphrase if it has one."""
        try:
            private = self.keys.store.private_key.read_text(encoding='utf-8')
        except OSError as error:
            raise DecryptionFailed(
                f"The project's private key is not available: {error}",
                hints=["secret import <directory>"])

        self.keys.provider.install(private)
        if not self.keys.provider.is_protected(private):
            return None
        return self.keys.prompt.secret("Passphrase for the project key")

    def encrypt_secret(self, secret: Secret, recipients: Recipients) -> Secret:
        if not secret.plaintext.is_file():
            raise EncryptionFailed(f"{self.rel(secret.plaintext)} does not exist")

        log.debug(f"Encrypting {secret.plaintext} to {secret.encrypted}")
        self.keys.provider.encrypt(
            secret.plaintext,
            secret.encrypted,
            recipients=recipients.fingerprints,
            key_files=recipients.key_files)

        # The ciphertext is kept even if the example file cannot be written.
        self.generator.generate(secret.plaintext)
        return secret

    def decrypt_secret(self, secret: Secret, passphrase: typing.Optional[str]) -> Secret:
        if not secret.encrypted.is_file():
            raise DecryptionFailed(f"{self.rel(secret.encrypted)} does not exist")

        log.debug(f"Decrypting {secret.encrypted} to {secret.plaintext}")
        self.keys.provider.decrypt(secret.encrypted, secret.plaintext, passphrase)
        return secret

    def encrypt(self, path: pathlib.Path, key: typing.Optional[str] = None) -> Secret:
        recipients = self.recipients(self.config(), key)
        return self.encrypt_secret(Secret.from_plaintext(self.resolve(path), self.suffix), recipients)

    def decrypt(self, path: pathlib.Path) -> Secret:
        self.keys.require_key(self.config())
        secret = Secret.from_encrypted(self.resolve(path), self.suffix)
        if not secret.encrypted.is_file():
            raise DecryptionFailed(f"{self.rel(secret.encrypted)} does not exist")
        return self.decrypt_secret(secret, self.passphrase())

    def plaintexts(self, config: ProjectConfig) -> typing.List[Secret]:
        paths = PlaintextIncantation(config.secret_files, self.suffix).search(self.directory)
        return [Secret.from_plaintext(path, self.suffix) for path in paths]

    def ciphertexts(self, config: ProjectConfig) -> typing.List[Secret]:
        paths = EncryptedIncantation(config.secret_files, self.suffix).search(self.directory)
        return [Secret.from_encrypted(path, self.suffix) for path in paths]

    def encrypt_all(self, key: typing.Optional[str] = None) -> BatchReport:
        """Encrypt every secret file, carrying on past files that fail."""
        config = self.config()
        recipients = self.recipients(config, key)
        report = BatchReport()

        secrets = self.plaintexts(config)
        log.info(f"Encrypting {len(secrets)} secrets")
        for secret in secrets:
            try:
                report.succeeded.append(self.encrypt_secret(secret, recipients))
            except KeepSecretException as error:
                log.warning(f"Failed to encrypt {self.rel(secret.plaintext)}: {error.message}")
                report.failed.append((secret.plaintext, error))

        log.info(f"Encrypted {len(report.succeeded)} of {report.total} secrets")
        return report

    def decrypt_all(self) -> BatchReport:
        """Decrypt every encrypted secret file, carrying on past files that fail."""
        config = self.config()
        self.keys.require_key(config)
        report = BatchReport()

        secrets = self.ciphertexts(config)
        if not secrets:
            return report

        passphrase = self.passphrase()
        log.info(f"Decrypting {len(secrets)} secrets")
        for secret in secrets:
            try:
                report.succeeded.append(self.decrypt_secret(secret, passphrase))
            except KeepSecretException as error:
                log.warning(f"Failed to decrypt {self.rel(secret.encrypted)}: {error.message}")
                report.failed.append((secret.encrypted, error))

        log.info(f"Decrypted {len(report.succeeded)} of {report.total} secrets")
        return report

    def unignored(self) -> typing.Sequence[pathlib.Path]:
        """Plaintext secret files that git would commit."""
        log.info("Checking all plaintext secret files are ignored by git")
        return unignored(self.directory, [s.plaintext for s in self.plaintexts(self.config())])
