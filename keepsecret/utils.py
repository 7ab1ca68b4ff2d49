import logging
import pathlib
import typing

import git

log = logging.getLogger(__name__)

DIRECTORY_MODE = 0o700
FILE_MODE = 0o600


def find_git_directory() -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(search_parent_directories=True)
    except git.exc.InvalidGitRepositoryError:
        return None
    return pathlib.Path(repo.working_dir)


def find_project_directory() -> pathlib.Path:
    """Use the enclosing git repository, or the current directory outside of one."""
    return find_git_directory() or pathlib.Path.cwd()


def slug(name: typing.Optional[str], default: str = 'key') -> str:
    """Lower-case a name and replace spaces, for use in filenames."""
    if not name:
        return default
    return name.lower().replace(' ', '_')


def ensure_directory(directory: pathlib.Path) -> pathlib.Path:
    directory.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
    return directory


def write_private(path: pathlib.Path, text: str) -> pathlib.Path:
    """Write a file only the current user can read."""
    ensure_directory(path.parent)
    path.write_text(text, encoding='utf-8')
    path.chmod(FILE_MODE)
    log.debug(f"Wrote {path}")
    return path


def unignored(
        directory: pathlib.Path,
        paths: typing.Iterable[pathlib.Path]) -> typing.Sequence[pathlib.Path]:
    """Find paths in a git repository that are not excluded by a .gitignore file."""
    try:
        repo = git.Repo(directory, search_parent_directories=True)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        log.debug(f"{directory} is not in a git repository")
        return ()

    root = pathlib.Path(repo.working_dir).resolve()
    relative = {p.resolve().relative_to(root).as_posix(): p for p in paths}
    if not relative:
        return ()
    ignored = set(repo.ignored(*relative.keys()))
    return tuple(p for name, p in sorted(relative.items()) if name not in ignored)
