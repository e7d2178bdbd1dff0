"""Print a bcrypt hash for ADMIN_PASSWORD_HASH."""
import click

from auth import get_password_hash


@click.command()
@click.argument("password", required=False)
def main(password):
    """Hash PASSWORD (prompted for when omitted)."""
    if not password:
        password = click.prompt("Admin password", hide_input=True, confirmation_prompt=True)
    click.echo(get_password_hash(password))


if __name__ == "__main__":
    main()
