import functools
import logging
import os.path
import pathlib
import typing

import attr
import click

from . import __doc__, __version__
from .config import DEFAULT_SECRET_FILES, ConfigStore, ProjectConfig
from .errors import CryptoOperationError
from .gpg import RSA_SIZES, KeyAlgorithm, provider
from .keys import KeyManager
from .prompts import Prompt, TerminalPrompt
from .secrets import BatchReport, Secret, SecretKeeper
from .utils import find_project_directory

log = logging.getLogger(__name__)


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def enc(secret: Secret) -> str:
    """Style a path to a encrypted file."""
    return click.style(rel(secret.encrypted), fg='green')


def dec(secret: Secret) -> str:
    """Style a path to a decrypted file."""
    return click.style(rel(secret.plaintext), fg='red')


def ex(secret: Secret) -> str:
    """Style a path to an example file."""
    return click.style(rel(secret.example), fg='blue')


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


@attr.s(frozen=True)
class Project:
    """Builds the key manager and secret keeper for a project directory."""

    directory: pathlib.Path = attr.ib()
    verbose: bool = attr.ib(default=False)
    home: typing.Optional[pathlib.Path] = attr.ib(default=None)
    prompt: Prompt = attr.ib(factory=TerminalPrompt)

    @property
    def store(self) -> ConfigStore:
        return ConfigStore(self.directory)

    def keys(self, backend: typing.Optional[str] = None) -> KeyManager:
        backend = backend or self.store.load_or_default().backend
        return KeyManager(
            store=self.store,
            provider=provider(backend, verbose=self.verbose, home=self.home),
            prompt=self.prompt)

    def keeper(self) -> SecretKeeper:
        return SecretKeeper(self.keys())


def report(result: BatchReport, verb: str, describe: typing.Callable[[Secret], str]) -> None:
    for secret in result.succeeded:
        click.echo(f"{verb} {describe(secret)}")
    for path, error in result.failed:
        click.secho(f"Failed on {rel(path)}: {error.format_message()}", fg='yellow', err=True)
    click.echo(f"Processed {len(result.succeeded)} of {result.total} files")


def warn_unignored(sk: SecretKeeper) -> None:
    for path in sk.unignored():
        click.secho(f"Plaintext {rel(path)} is not excluded by .gitignore", fg='yellow', err=True)


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    default=find_project_directory,
    required=True,
    help="Defaults to the current git repository.")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '-v', '--verbose', 'gpg_verbose',
    default=False,
    is_flag=True,
    help="Display GPG's normal STDERR output.")
@click.option(
    '--gnupg-home',
    type=PathType(file_okay=False, dir_okay=True),
    default=None,
    help="Use a GPG home directory other than GPG's default.")
@click.pass_context
def main(
        ctx,
        debug: bool,
        path: pathlib.Path,
        gpg_verbose: bool,
        gnupg_home: typing.Optional[pathlib.Path]):
    logging.basicConfig(level=(logging.DEBUG if debug else logging.WARNING))
    ctx.obj = Project(directory=path, verbose=gpg_verbose, home=gnupg_home)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"keepsecret {__version__}")


@main.command()
@click.option(
    '-b', '--backend',
    default='gpg',
    show_default=True,
    help="Cryptographic backend used for the project key.")
@click.pass_obj
def init(project: Project, backend: str):
    """Create a project key and configuration."""
    keys = project.keys(backend)
    click.echo(f"Initialising with the {backend} backend")

    existing = project.store.load() if project.store.exists() else None
    if existing and existing.gpg_key:
        click.confirm(
            f"The project already uses key {existing.gpg_key}. Create a new key?",
            abort=True)

    project_name = click.prompt("Project name", default=project.directory.resolve().name)

    click.echo(f"Files to encrypt, separated by commas (default: {', '.join(DEFAULT_SECRET_FILES)})")
    files = click.prompt("Files", default='', show_default=False)
    patterns = [pattern.strip() for pattern in files.split(',') if pattern.strip()]

    family = click.prompt(
        "Key type",
        type=click.Choice(['RSA', 'ECC'], case_sensitive=False),
        default='RSA')
    if family.upper() == 'RSA':
        size = click.prompt(
            "RSA key size",
            type=click.Choice([str(size) for size in RSA_SIZES]),
            default='4096')
        algorithm = KeyAlgorithm.rsa(int(size))
    else:
        algorithm = KeyAlgorithm.ecc()

    passphrase = None
    if click.confirm("Protect the key with a passphrase?", default=False):
        passphrase = project.prompt.secret("Passphrase")
        if passphrase != project.prompt.secret("Repeat the passphrase"):
            raise click.ClickException("The passphrases do not match")

    config = ProjectConfig(
        backend=backend,
        project_name=project_name,
        secret_files=patterns or DEFAULT_SECRET_FILES,
        secret_dir=existing.secret_dir if existing else None)

    click.echo(f"Creating a {algorithm} key for {project_name}")
    key = keys.generate(project_name, algorithm, passphrase, config=config)

    click.secho(f"Created key {key.key_id} ({key.info.uid})", fg='green')
    click.echo("Run 'secret export' to back up the key and 'secret encrypt' to encrypt files")


@main.command()
@click.option(
    '-a', '--all', 'show_all',
    default=False,
    is_flag=True,
    help="Show every available secret key, not only the project's.")
@click.pass_obj
def check(project: Project, show_all: bool):
    """Check the project key is available and can encrypt."""
    keys = project.keys()

    if show_all:
        click.echo(keys.provider.listing(), nl=False)
        return

    config = project.store.load_or_default()
    key_id = keys.active_key_id(config)
    if config.gpg_key:
        click.echo(f"Checking project key {key_id} from the config")
    else:
        click.echo(f"Checking project key {key_id}, detected from the project name")

    info = keys.lookup(key_id)
    click.secho("Project key found:", fg='green')
    click.echo(f"  fingerprint: {info.fingerprint}")
    click.echo(f"  identity:    {info.uid}")
    if info.created:
        click.echo(f"  created:     {info.created:%Y-%m-%d}")

    click.echo("Checking the key can encrypt... ", nl=False)
    try:
        keys.probe(info.fingerprint, decrypt=False)
    except CryptoOperationError:
        click.secho("failed", fg='red')
        raise
    click.secho("OK", fg='green')

    if project.store.exists():
        warn_unignored(SecretKeeper(keys))


@main.command()
@click.argument(
    'path',
    type=PathType(dir_okay=False),
    required=False)
@click.option(
    '-k', '--key', 'key',
    metavar='ID',
    default=None,
    help="Encrypt for this key instead of the project key.")
@click.option(
    '-a', '--all', 'process_all',
    default=False,
    is_flag=True,
    help="Encrypt every configured secret file (the default without a path).")
@click.pass_obj
def encrypt(
        project: Project,
        path: typing.Optional[pathlib.Path],
        key: typing.Optional[str],
        process_all: bool):
    """
    Encrypt secret files and write their example files.

    If no path is given, encrypts every file matching the project's patterns.
    """
    if path and process_all:
        raise click.UsageError("Give a path or --all, not both")

    sk = project.keeper()

    if path:
        secret = sk.encrypt(path.resolve(), key=key)
        click.echo(f"Encrypted {dec(secret)} to {enc(secret)} and wrote {ex(secret)}")
    else:
        result = sk.encrypt_all(key)
        if not result.total:
            click.echo("No files to encrypt were found")
            return
        report(result, "Encrypted", lambda s: f"{dec(s)} to {enc(s)} and wrote {ex(s)}")

    warn_unignored(sk)


@main.command()
@click.argument(
    'path',
    type=PathType(dir_okay=False),
    required=False)
@click.option(
    '-a', '--all', 'process_all',
    default=False,
    is_flag=True,
    help="Decrypt every configured secret file (the default without a path).")
@click.pass_obj
def decrypt(
        project: Project,
        path: typing.Optional[pathlib.Path],
        process_all: bool):
    """
    Decrypt encrypted secret files.

    If no path is given, decrypts every encrypted file matching the project's patterns.
    """
    if path and process_all:
        raise click.UsageError("Give a path or --all, not both")

    sk = project.keeper()

    if path:
        secret = sk.decrypt(path.resolve())
        click.echo(f"Decrypted {enc(secret)} to {dec(secret)}")
        return

    result = sk.decrypt_all()
    if not result.total:
        click.echo("No files to decrypt were found")
        return
    report(result, "Decrypted", lambda s: f"{enc(s)} to {dec(s)}")


@main.command()
@click.option(
    '-o', '--output',
    type=PathType(file_okay=False, dir_okay=True),
    default=None,
    help="Defaults to the project's backup directory.")
@click.pass_obj
def export(project: Project, output: typing.Optional[pathlib.Path]):
    """Export the project key's public and private halves."""
    files = project.keys().export(output)
    click.secho("Exported the project key:", fg='green')
    click.echo(f"  public key:  {rel(files.public)}")
    click.echo(f"  private key: {rel(files.private)}")
    click.secho("Share the private key with the rest of the project securely!", fg='yellow')


@main.command(name='import')
@click.argument(
    'directory',
    type=PathType(file_okay=False, dir_okay=True, exists=True),
    required=False)
@click.option(
    '-d', '--dir', 'search',
    type=PathType(file_okay=False, dir_okay=True, exists=True),
    default=None,
    help="Directory to search for key files, defaults to the project directory.")
@click.option(
    '-f', '--force',
    default=False,
    is_flag=True,
    help="Replace a different configured key without asking.")
@click.option(
    '--passphrase/--no-passphrase',
    default=None,
    help="Check the imported key works with a passphrase, or without one.")
@click.pass_obj
def import_keys(
        project: Project,
        directory: typing.Optional[pathlib.Path],
        search: typing.Optional[pathlib.Path],
        force: bool,
        passphrase: typing.Optional[bool]):
    """Import the project key from exported key files."""
    keys = project.keys()
    key = keys.import_keys(search or directory, force=force)

    if key.source:
        click.echo("Found key files:")
        click.echo(f"  public key:  {rel(key.source.public)}")
        click.echo(f"  private key: {rel(key.source.private)}")

    if passphrase is not None:
        secret = project.prompt.secret("Passphrase for the imported key") if passphrase else None
        keys.probe(key.fingerprint, secret)
        click.echo("The imported key can decrypt files")

    click.secho(f"Imported key {key.key_id} ({key.info.uid})", fg='green')


@main.command(name='delete-key')
@click.option(
    '-f', '--force',
    default=False,
    is_flag=True,
    help="Delete without asking for confirmation.")
@click.option(
    '--no-backup', 'no_backup',
    default=False,
    is_flag=True,
    help="Do not export the key before deleting it.")
@click.pass_obj
def delete_key(project: Project, force: bool, no_backup: bool):
    """Delete the project key."""
    result = project.keys().delete(force=force, skip_backup=no_backup)

    if result is None:
        click.echo("Cancelled, the key was not deleted")
        return

    if result.backup:
        click.echo(f"Backed up the key to {rel(result.backup.public)} and {rel(result.backup.private)}")
    if result.backup_error:
        click.secho(
            f"Could not back up the key before deleting it: {result.backup_error.message}",
            fg='yellow', err=True)

    click.secho(f"Deleted key {result.key.key_id} ({result.key.fingerprint})", fg='green')
