"""
Cryptographic providers.

A Provider performs the primitive operations keepsecret needs: generating,
installing, exporting, listing and deleting keys, and encrypting and decrypting
files. GPG implements them by running the gpg executable.
"""

import datetime
import logging
import os
import pathlib
import re
import subprocess
import typing

import attr

from .errors import (
    ConfigError,
    DecryptionFailed,
    EncryptionFailed,
    InvalidKeyMaterial,
    KeepSecretException,
    KeyDeletionError,
    KeyGenerationError,
    KeyLookupError,
    PersistenceError,
)

log = logging.getLogger(__name__)

RSA_SIZES = (2048, 3072, 4096)
FAMILIES = ('rsa', 'ecc')
PROTECTED = re.compile(r'\bS2K\b|\bprotect IV\b')


def _check_size(instance: 'KeyAlgorithm', attribute, value: typing.Optional[int]) -> None:
    if instance.family == 'rsa' and value not in RSA_SIZES:
        raise ValueError(f"RSA keys must be one of {RSA_SIZES} bits, not {value}")
    if instance.family == 'ecc' and value is not None:
        raise ValueError("ECC keys use a fixed curve and take no size")


@attr.s(frozen=True)
class KeyAlgorithm:
    family: str = attr.ib(default='rsa', converter=str.lower, validator=attr.validators.in_(FAMILIES))
    size: typing.Optional[int] = attr.ib(default=4096, validator=_check_size)

    @classmethod
    def rsa(cls, size: int = 4096) -> 'KeyAlgorithm':
        return cls('rsa', size)

    @classmethod
    def ecc(cls) -> 'KeyAlgorithm':
        return cls('ecc', None)

    def __str__(self):
        return f"rsa{self.size}" if self.family == 'rsa' else 'ed25519/cv25519'


@attr.s(frozen=True)
class Identity:
    name: str = attr.ib()
    email: str = attr.ib()

    @classmethod
    def for_project(cls, project_name: str, slug: str) -> 'Identity':
        return cls(name=f"{project_name} Project Key", email=f"project+{slug}@team.org")

    def __str__(self):
        return f"{self.name} <{self.email}>"


@attr.s(frozen=True, kw_only=True)
class KeyInfo:
    fingerprint: str = attr.ib(converter=str.upper)
    uid: str = attr.ib(default='')
    created: typing.Optional[datetime.datetime] = attr.ib(default=None)
    secret: bool = attr.ib(default=False)

    @property
    def key_id(self) -> str:
        """The long key ID, which is the tail of a v4 fingerprint."""
        return self.fingerprint[-16:]

    @property
    def name(self) -> str:
        return self.uid.split('<', 1)[0].strip()

    @property
    def email(self) -> str:
        match = re.search(r'<([^>]*)>', self.uid)
        return match.group(1) if match else ''

    def matches(self, key_id: str) -> bool:
        key_id = key_id.upper().replace(' ', '')
        if key_id.startswith('0X'):
            key_id = key_id[2:]
        return bool(key_id) and self.fingerprint.endswith(key_id)


def _unescape(value: str) -> str:
    return re.sub(r'\\x([0-9a-fA-F]{2})', lambda m: chr(int(m.group(1), 16)), value)


def _timestamp(value: str) -> typing.Optional[datetime.datetime]:
    if not value.isdigit():
        return None
    return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)


def parse_colons(output: str) -> typing.List[KeyInfo]:
    """Parse the primary keys out of gpg's --with-colons output."""
    records: typing.List[typing.Dict[str, typing.Any]] = []
    current: typing.Optional[typing.Dict[str, typing.Any]] = None

    for line in output.splitlines():
        fields = line.split(':')
        if fields[0] in ('pub', 'sec'):
            current = {'secret': fields[0] == 'sec', 'created': fields[5] if len(fields) > 5 else ''}
            records.append(current)
        elif fields[0] in ('sub', 'ssb'):
            # Fingerprints and uids after a subkey belong to the subkey.
            current = None
        elif current is not None and len(fields) > 9:
            if fields[0] == 'fpr' and 'fingerprint' not in current:
                current['fingerprint'] = fields[9]
            elif fields[0] == 'uid' and 'uid' not in current:
                current['uid'] = _unescape(fields[9])

    return [KeyInfo(
        fingerprint=record['fingerprint'],
        uid=record.get('uid', ''),
        created=_timestamp(record['created']),
        secret=record['secret'],
    ) for record in records if record.get('fingerprint')]


class Provider:
    """The primitive operations a cryptographic backend must implement."""

    suffix = '.gpg'

    def generate(
            self,
            identity: Identity,
            algorithm: KeyAlgorithm,
            passphrase: typing.Optional[str] = None) -> str:
        """Create a keypair and return its fingerprint."""
        raise NotImplementedError

    def export_public(self, fingerprint: str) -> str:
        raise NotImplementedError

    def export_private(self, fingerprint: str, passphrase: typing.Optional[str] = None) -> str:
        raise NotImplementedError

    def inspect(self, armored: str, source: str = '<stdin>') -> KeyInfo:
        """Validate armored key material and describe its primary key."""
        raise NotImplementedError

    def is_protected(self, armored: str) -> bool:
        raise NotImplementedError

    def install(self, armored: str) -> None:
        """Add key material to the provider's key store."""
        raise NotImplementedError

    def keys(self) -> typing.List[KeyInfo]:
        """List the secret keys in the provider's key store."""
        raise NotImplementedError

    def listing(self) -> str:
        """A human readable listing of the secret keys in the key store."""
        raise NotImplementedError

    def delete(self, fingerprint: str) -> None:
        raise NotImplementedError

    def remediation(self, fingerprint: str) -> typing.List[str]:
        """Commands a user can run to delete a key by hand."""
        raise NotImplementedError

    def encrypt(
            self,
            source: pathlib.Path,
            output: pathlib.Path,
            recipients: typing.Iterable[str] = (),
            key_files: typing.Iterable[pathlib.Path] = ()) -> None:
        raise NotImplementedError

    def decrypt(
            self,
            source: pathlib.Path,
            output: pathlib.Path,
            passphrase: typing.Optional[str] = None) -> None:
        raise NotImplementedError


def _reason(error: subprocess.CalledProcessError) -> str:
    lines = [line for line in (error.stderr or '').splitlines() if line.strip()]
    return lines[-1] if lines else f"gpg exited with status {error.returncode}"


@attr.s(frozen=True)
class GPG(Provider):
    verbose: bool = attr.ib(default=False)
    home: typing.Optional[pathlib.Path] = attr.ib(default=None)

    def command(
            self,
            arguments: typing.Sequence[str],
            armour: bool) -> typing.Tuple[str, ...]:
        command: typing.Tuple[str, ...] = ('gpg', '--batch', '--yes', '--pinentry-mode', 'loopback')
        if armour:
            command = (*command, '--armour')
        if self.verbose:
            command = (*command, '--verbose')
        return (*command, *arguments)

    def run(self,
            arguments: typing.Sequence[str],
            armour: bool = False,
            stdin: typing.Optional[str] = None) -> subprocess.CompletedProcess:
        env = dict(os.environ)
        if self.home:
            env['GNUPGHOME'] = self.home.as_posix()
        command = self.command(arguments, armour)
        log.debug(f"Running {' '.join(command)}")
        try:
            return subprocess.run(
                command,
                encoding='utf-8',
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=None if self.verbose else subprocess.PIPE,
                env=env,
                check=True)
        except FileNotFoundError as error:
            raise KeepSecretException(f"Could not run gpg: {error}")
        except subprocess.CalledProcessError as error:
            for line in (error.stderr or '').splitlines():
                log.error(line)
            raise

    @staticmethod
    def parameters(identity: Identity, algorithm: KeyAlgorithm, passphrase: typing.Optional[str]) -> str:
        """Build an unattended key generation parameter file."""
        if algorithm.family == 'rsa':
            lines = [
                'Key-Type: RSA', f'Key-Length: {algorithm.size}', 'Key-Usage: sign',
                'Subkey-Type: RSA', f'Subkey-Length: {algorithm.size}', 'Subkey-Usage: encrypt',
            ]
        else:
            lines = [
                'Key-Type: EDDSA', 'Key-Curve: ed25519', 'Key-Usage: sign',
                'Subkey-Type: ECDH', 'Subkey-Curve: cv25519', 'Subkey-Usage: encrypt',
            ]
        lines += [f'Name-Real: {identity.name}', f'Name-Email: {identity.email}', 'Expire-Date: 0']
        lines.append(f'Passphrase: {passphrase}' if passphrase else '%no-protection')
        lines.append('%commit')
        return '\n'.join(lines) + '\n'

    def generate(self, identity, algorithm, passphrase=None):
        log.debug(f"Generating a {algorithm} key for {identity}")
        try:
            result = self.run(
                ['--status-fd', '1', '--gen-key'],
                stdin=self.parameters(identity, algorithm, passphrase))
        except subprocess.CalledProcessError as error:
            raise KeyGenerationError(f"gpg could not generate a key: {_reason(error)}")

        for line in result.stdout.splitlines():
            if line.startswith('[GNUPG:] KEY_CREATED'):
                return line.split()[-1]
        raise KeyGenerationError("gpg did not report the fingerprint of the new key")

    def export_public(self, fingerprint):
        try:
            text = self.run(['--export', fingerprint], armour=True).stdout
        except subprocess.CalledProcessError as error:
            raise PersistenceError(f"gpg could not export {fingerprint}: {_reason(error)}")
        if not text.strip():
            raise PersistenceError(f"gpg exported nothing for {fingerprint}")
        return text

    def export_private(self, fingerprint, passphrase=None):
        try:
            text = self.run(
                ['--passphrase-fd', '0', '--export-secret-keys', fingerprint],
                armour=True,
                stdin=f"{passphrase or ''}\n").stdout
        except subprocess.CalledProcessError as error:
            raise PersistenceError(f"gpg could not export the secret key {fingerprint}: {_reason(error)}")
        if not text.strip():
            raise PersistenceError(f"gpg exported no secret key for {fingerprint}")
        return text

    def inspect(self, armored, source='<stdin>'):
        try:
            result = self.run(
                ['--with-colons', '--with-fingerprint', '--import-options', 'show-only', '--import'],
                stdin=armored)
        except subprocess.CalledProcessError as error:
            raise InvalidKeyMaterial(source, _reason(error))

        keys = parse_colons(result.stdout)
        if not keys:
            raise InvalidKeyMaterial(source, "no key found")
        return keys[0]

    def is_protected(self, armored):
        try:
            result = self.run(['--list-packets'], stdin=armored)
        except subprocess.CalledProcessError as error:
            raise InvalidKeyMaterial('<private key>', _reason(error))
        # Protected secret key packets list their S2K parameters.
        return PROTECTED.search(result.stdout) is not None

    def install(self, armored):
        try:
            self.run(['--import'], stdin=armored)
        except subprocess.CalledProcessError as error:
            raise PersistenceError(f"gpg could not import the key: {_reason(error)}")

    def keys(self):
        try:
            result = self.run(['--with-colons', '--with-fingerprint', '--list-secret-keys'])
        except subprocess.CalledProcessError as error:
            raise KeyLookupError(f"gpg could not list secret keys: {_reason(error)}")
        return parse_colons(result.stdout)

    def listing(self):
        try:
            return self.run(['--list-secret-keys', '--keyid-format', 'LONG']).stdout
        except subprocess.CalledProcessError as error:
            raise KeyLookupError(f"gpg could not list secret keys: {_reason(error)}")

    def delete(self, fingerprint):
        log.debug(f"Deleting {fingerprint}")
        try:
            self.run(['--delete-secret-and-public-key', fingerprint])
        except subprocess.CalledProcessError as error:
            raise KeyDeletionError(fingerprint, _reason(error), self.remediation(fingerprint))

    def remediation(self, fingerprint):
        prefix = f"GNUPGHOME={self.home} " if self.home else ''
        return [
            f"{prefix}gpg --delete-secret-keys {fingerprint}",
            f"{prefix}gpg --delete-keys {fingerprint}",
        ]

    def encrypt(self, source, output, recipients=(), key_files=()):
        log.debug(f"Encrypting {source} to {output}")
        args: typing.List[str] = ['--trust-model', 'always']
        for recipient in recipients:
            args += ['--recipient', recipient]
        for key_file in key_files:
            args += ['--recipient-file', str(key_file)]
        args += ['--output', str(output), '--encrypt', str(source)]
        try:
            self.run(args)
        except subprocess.CalledProcessError as error:
            raise EncryptionFailed(f"Could not encrypt {source}: {_reason(error)}")

    def decrypt(self, source, output, passphrase=None):
        log.debug(f"Decrypting {source} to {output}")
        try:
            self.run(
                ['--passphrase-fd', '0', '--output', str(output), '--decrypt', str(source)],
                stdin=f"{passphrase or ''}\n")
        except subprocess.CalledProcessError as error:
            raise DecryptionFailed(f"Could not decrypt {source}: {_reason(error)}")


PROVIDERS: typing.Dict[str, typing.Type[Provider]] = {
    'gpg': GPG,
}


def provider(backend: str, **kwargs) -> Provider:
    try:
        cls = PROVIDERS[backend]
    except KeyError:
        raise ConfigError(
            f"Unknown backend '{backend}', expected one of: {', '.join(sorted(PROVIDERS))}")
    return cls(**kwargs)
