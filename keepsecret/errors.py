"""
Errors raised by keepsecret.

Every error is a ClickException so the command line reports the message and
exits with a non-zero status. Errors can carry hints: follow-up commands the
user can run when the tool cannot recover on its own.
"""

import typing

import click


class KeepSecretException(click.ClickException):
    def __init__(self, message: str, hints: typing.Sequence[str] = ()):
        super().__init__(message)
        self.hints: typing.Tuple[str, ...] = tuple(hints)

    def format_message(self) -> str:
        if not self.hints:
            return self.message
        lines = [self.message, "Try:"]
        lines.extend(f"    {hint}" for hint in self.hints)
        return "\n".join(lines)


class ConfigError(KeepSecretException):
    """The project configuration is missing, unreadable or unwritable."""


class NoKeyConfigured(ConfigError):
    def __init__(self):
        super().__init__(
            "No project key is configured",
            hints=["secret init", "secret import <directory>"])


class KeyLifecycleError(KeepSecretException):
    """Generating, importing, exporting or deleting the project key failed."""


class KeyGenerationError(KeyLifecycleError):
    pass


class PersistenceError(KeyLifecycleError):
    pass


class KeyFilesNotFound(KeyLifecycleError):
    def __init__(self, directory, prefix: str):
        super().__init__(
            f"Could not find both key files with the prefix '{prefix}' "
            f"in {directory}",
            hints=["secret import <directory>"])
        self.directory = directory
        self.prefix = prefix


class NoActiveKey(KeyLifecycleError):
    def __init__(self):
        super().__init__(
            "The project has no active key to export",
            hints=["secret init", "secret import <directory>"])


class KeyNotFound(KeyLifecycleError):
    def __init__(self, key_id: str):
        super().__init__(
            f"Key {key_id} was not found in the keyring; "
            f"the reference to it has been removed from the project config",
            hints=["secret import <directory>", "secret check --all"])
        self.key_id = key_id


class KeyDeletionError(KeyLifecycleError):
    """Deleting key material failed; the user has to finish by hand."""

    def __init__(self, fingerprint: str, reason: str, commands: typing.Sequence[str]):
        super().__init__(
            f"Could not delete key {fingerprint}: {reason}",
            hints=commands)
        self.fingerprint = fingerprint


class ValidationError(KeepSecretException):
    """Key material failed validation."""


class InvalidKeyMaterial(ValidationError):
    def __init__(self, path, reason: str):
        super().__init__(f"{path} is not valid armored key material: {reason}")
        self.path = path


class CryptoOperationError(KeepSecretException):
    """Encrypting or decrypting a file failed."""


class EncryptionFailed(CryptoOperationError):
    pass


class DecryptionFailed(CryptoOperationError):
    pass


class ExampleGenerationError(KeepSecretException):
    def __init__(self, path, reason: str):
        super().__init__(f"Could not write an example file for {path}: {reason}")
        self.path = path


class KeyLookupError(KeepSecretException):
    """A key identifier could not be resolved."""


class FingerprintNotFound(KeyLookupError):
    def __init__(self, key_id: str, reason: str = "no matching secret key"):
        super().__init__(
            f"Could not resolve the fingerprint of key {key_id}: {reason}",
            hints=["secret check --all", "secret encrypt --key <fingerprint>"])
        self.key_id = key_id


class ProjectKeyNotDetected(KeyLookupError):
    def __init__(self, project_name: str, reason: str = "no matching identity"):
        super().__init__(
            f"Could not detect the key for project '{project_name}': {reason}",
            hints=["secret init", "secret import <directory>", "secret check --all"])
        self.project_name = project_name


class AmbiguousKey(FingerprintNotFound):
    def __init__(self, key_id: str, count: int):
        super().__init__(key_id, f"{count} keys match, use the full fingerprint")
        self.count = count
