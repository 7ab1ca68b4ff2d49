import base64
import datetime
import hashlib
import json
import pathlib
import typing

import attr
import click.testing
import pytest

import keepsecret.cli
import keepsecret.gpg
from keepsecret.config import ConfigStore, ProjectConfig
from keepsecret.errors import (
    DecryptionFailed,
    EncryptionFailed,
    InvalidKeyMaterial,
    KeyDeletionError,
    PersistenceError,
)
from keepsecret.gpg import KeyAlgorithm, KeyInfo, Provider
from keepsecret.keys import KeyManager
from keepsecret.prompts import Prompt
from keepsecret.secrets import SecretKeeper

CREATED = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


@attr.s
class FakeKey:
    fingerprint: str = attr.ib()
    uid: str = attr.ib()
    passphrase: typing.Optional[str] = attr.ib(default=None)
    secret: bool = attr.ib(default=True)


class FakeProvider(Provider):
    """An in-memory key store with a reversible stand-in for encryption."""

    def __init__(self):
        self.keyring: typing.Dict[str, FakeKey] = {}
        self.broken: typing.Set[str] = set()
        self.refuse_delete = False
        self.refuse_export = False
        self.deleted: typing.List[str] = []

    @staticmethod
    def armor(key: FakeKey, private: bool) -> str:
        kind = 'PRIVATE' if private else 'PUBLIC'
        data = {'fingerprint': key.fingerprint, 'uid': key.uid, 'secret': private}
        if private:
            data['passphrase'] = key.passphrase
        body = base64.b64encode(json.dumps(data, sort_keys=True).encode()).decode()
        return f"-----BEGIN PGP {kind} KEY BLOCK-----\n\n{body}\n-----END PGP {kind} KEY BLOCK-----\n"

    @staticmethod
    def read(armored: str, source: str = '<stdin>') -> dict:
        try:
            return json.loads(base64.b64decode(armored.strip().splitlines()[2], validate=True))
        except (IndexError, ValueError) as error:
            raise InvalidKeyMaterial(source, str(error))

    def generate(self, identity, algorithm, passphrase=None):
        seed = f"{identity} {algorithm} {len(self.keyring)}".encode()
        fingerprint = hashlib.sha1(seed).hexdigest().upper()
        self.keyring[fingerprint] = FakeKey(fingerprint, str(identity), passphrase)
        return fingerprint

    def add(self, fingerprint: str, uid: str) -> None:
        self.keyring[fingerprint] = FakeKey(fingerprint, uid)

    def export_public(self, fingerprint):
        if self.refuse_export or fingerprint not in self.keyring:
            raise PersistenceError(f"cannot export {fingerprint}")
        return self.armor(self.keyring[fingerprint], private=False)

    def export_private(self, fingerprint, passphrase=None):
        if self.refuse_export or fingerprint not in self.keyring:
            raise PersistenceError(f"cannot export {fingerprint}")
        return self.armor(self.keyring[fingerprint], private=True)

    def inspect(self, armored, source='<stdin>'):
        data = self.read(armored, source)
        return KeyInfo(fingerprint=data['fingerprint'], uid=data['uid'], created=CREATED, secret=data['secret'])

    def is_protected(self, armored):
        return bool(self.read(armored).get('passphrase'))

    def install(self, armored):
        data = self.read(armored)
        key = self.keyring.setdefault(
            data['fingerprint'], FakeKey(data['fingerprint'], data['uid'], secret=False))
        if data['secret']:
            key.secret = True
            key.passphrase = data['passphrase']

    def keys(self):
        return [
            KeyInfo(fingerprint=k.fingerprint, uid=k.uid, created=CREATED, secret=True)
            for k in self.keyring.values() if k.secret]

    def listing(self):
        lines = ['/root/.gnupg/pubring.kbx', '------------------------']
        for key in self.keys():
            lines += [
                f"sec   rsa4096/{key.key_id} 2024-01-01 [SC]",
                f"      {key.fingerprint}",
                f"uid                 [ultimate] {key.uid}",
                f"ssb   rsa4096/{key.fingerprint[:16]} 2024-01-01 [E]",
                "",
            ]
        return '\n'.join(lines) + '\n'

    def delete(self, fingerprint):
        if self.refuse_delete:
            raise KeyDeletionError(fingerprint, "refused", self.remediation(fingerprint))
        del self.keyring[fingerprint]
        self.deleted.append(fingerprint)

    def remediation(self, fingerprint):
        return [f"fake --delete-secret-and-public-key {fingerprint}"]

    def encrypt(self, source, output, recipients=(), key_files=()):
        fingerprints = list(recipients) + [self.read(f.read_text())['fingerprint'] for f in key_files]
        if source.name in self.broken:
            raise EncryptionFailed(f"Could not encrypt {source}: broken")
        try:
            content = source.read_bytes()
        except OSError as error:
            raise EncryptionFailed(f"Could not encrypt {source}: {error}")
        output.write_bytes(b'FAKE ' + ','.join(fingerprints).encode() + b'\n' + base64.b64encode(content))

    def decrypt(self, source, output, passphrase=None):
        header, body = source.read_bytes().split(b'\n', 1)
        keys = [self.keyring.get(f) for f in header[5:].decode().split(',')]
        keys = [k for k in keys if k and k.secret]
        if not keys:
            raise DecryptionFailed(f"Could not decrypt {source}: no secret key")
        if keys[0].passphrase and keys[0].passphrase != passphrase:
            raise DecryptionFailed(f"Could not decrypt {source}: Bad passphrase")
        output.write_bytes(base64.b64decode(body))


@attr.s
class ScriptedPrompt(Prompt):
    secrets: typing.List[str] = attr.ib(factory=list)
    confirms: typing.List[bool] = attr.ib(factory=list)
    asked: typing.List[str] = attr.ib(factory=list)

    def secret(self, text):
        self.asked.append(text)
        return self.secrets.pop(0)

    def confirm(self, text, default=False):
        self.asked.append(text)
        return self.confirms.pop(0) if self.confirms else False


@pytest.fixture()
def project(tmp_path) -> pathlib.Path:
    directory = tmp_path / 'demo'
    directory.mkdir()
    return directory


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def prompt() -> ScriptedPrompt:
    return ScriptedPrompt()


@pytest.fixture()
def store(project) -> ConfigStore:
    return ConfigStore(project)


@pytest.fixture()
def keys(store, provider, prompt) -> KeyManager:
    return KeyManager(store=store, provider=provider, prompt=prompt)


@pytest.fixture()
def initialised(keys) -> KeyManager:
    keys.generate('Demo', KeyAlgorithm.rsa(4096), config=ProjectConfig(project_name='Demo'))
    return keys


@pytest.fixture()
def keeper(initialised) -> SecretKeeper:
    return SecretKeeper(initialised)


@pytest.fixture()
def invoke(project, provider, monkeypatch):
    monkeypatch.setitem(keepsecret.gpg.PROVIDERS, 'gpg', lambda **kwargs: provider)

    def invoke_func(arguments: typing.Sequence[str], input: typing.Optional[str] = None, exit_code: int = 0):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(keepsecret.cli.main, ['-p', str(project), *arguments], input=input)
        if result.exit_code != exit_code:
            message = f"Command secret {' '.join(arguments)} exited with {result.exit_code}:\n{result.output}"
            raise Exception(message) from result.exception
        return result.output

    return invoke_func
