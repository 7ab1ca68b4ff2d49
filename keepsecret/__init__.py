"""
Keepsecret protects a project's secret files with a project GPG key.

Each project gets one keypair, stored as armored text in '.secret/'. Secret files
are selected by the glob patterns in '.secret/config.yaml' and encrypted next to
the original with a '.gpg' suffix. Every encryption also writes a redacted
'.example' copy of the file that is safe to commit.

The rules used to name files are:

\b
    * '.env' is encrypted to '.env.gpg' and documented by '.env.example'.
    * 'config.yaml' is documented by 'config.example.yaml'.
    * '.config.yaml' is documented by '.config.example.yaml'.

Create a project key and configuration:

\b
    $ secret init

Encrypt all configured secret files, or a single file:

\b
    $ secret encrypt
    $ secret encrypt .env

Decrypt them again:

\b
    $ secret decrypt

Share the key with the rest of the team and import it on another machine:

\b
    $ secret export --output .secrets/backup
    $ secret import .secrets/backup
"""

__version__ = '0.2.0'
