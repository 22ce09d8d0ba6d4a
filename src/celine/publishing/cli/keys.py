from __future__ import annotations

from pathlib import Path

import typer

from celine.publishing.config.settings import settings
from celine.publishing.social.crypto import TokenCipher, generate_key

keys_app = typer.Typer(add_completion=False, help="Manage the access-token encryption key")

_KEY_NAME = "TOKEN_ENCRYPTION_KEY"


def _env_has_key(content: str, key: str) -> bool:
    return any(
        line.startswith(f"{key}=")
        for line in content.splitlines()
        if not line.startswith("#")
    )


@keys_app.command("gen")
def gen(
    env_file: Path = typer.Option(
        Path(".env"),
        "--env-file",
        "-e",
        help="Path to the .env file to update.",
        show_default=True,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Append a new key even if one is already set. Existing tokens become unreadable.",
    ),
) -> None:
    """Generate a Fernet key for social access tokens and write it to an .env file."""
    existing = env_file.read_text() if env_file.exists() else ""

    if _env_has_key(existing, _KEY_NAME) and not force:
        typer.echo(f"{_KEY_NAME} already set in {env_file}, nothing to do.")
        typer.echo("Use --force to regenerate.")
        raise typer.Exit(0)

    if force:
        existing = "\n".join(
            line for line in existing.splitlines() if not line.startswith(f"{_KEY_NAME}=")
        )

    key = generate_key()
    lines = ["\n# Social access token encryption", f"{_KEY_NAME}={key}"]
    env_file.write_text(existing.rstrip("\n") + "\n" + "\n".join(lines) + "\n")

    typer.echo(f"Written to {env_file}:")
    typer.echo(f"  {_KEY_NAME} = {key[:8]}...  (Fernet, 32 bytes)")


@keys_app.command("show")
def show(
    env_file: Path = typer.Option(
        Path(".env"),
        "--env-file",
        "-e",
        help="Path to the .env file to inspect.",
        show_default=True,
    ),
) -> None:
    """Show whether the encryption key is set in an .env file."""
    existing = env_file.read_text() if env_file.exists() else ""
    status = "✓ set" if _env_has_key(existing, _KEY_NAME) else "✗ missing"
    typer.echo(f"  {_KEY_NAME:<22} {status}")


@keys_app.command("encrypt")
def encrypt(token: str = typer.Argument(..., help="Plaintext access token")) -> None:
    """Encrypt an access token with the configured key (for manual connection rows)."""
    cipher = TokenCipher(settings.TOKEN_ENCRYPTION_KEY)
    if not cipher.enabled:
        typer.echo(f"Error: {_KEY_NAME} is not configured", err=True)
        raise typer.Exit(1)
    typer.echo(cipher.encrypt(token))
