# Flask CLI commands (run from the backend directory with FLASK_APP=wsgi.py):
# - flask workflow replay-intents [--older-than-minutes 5]
#   Finish shop verifications interrupted between the shop and owner writes.
# - flask accounts create-admin --name "Admin" --email admin@example.com
#   Create a verified admin account (prompts for the password).

from datetime import datetime, timedelta

import bcrypt
import click
from flask import current_app
from flask.cli import AppGroup
from pymongo.errors import DuplicateKeyError

from route_gateway import Role
from workflow import REQUEST_APPROVED

workflow_cli = AppGroup("workflow", help="Approval workflow maintenance.")
accounts_cli = AppGroup("accounts", help="Account bootstrap.")


@workflow_cli.command("replay-intents")
@click.option("--older-than-minutes", default=5, show_default=True, type=int)
def replay_intents(older_than_minutes):
    workflow = current_app.extensions["workflow"]
    replayed = workflow.replay_pending_intents(timedelta(minutes=max(older_than_minutes, 0)))
    click.echo(f"Replayed {len(replayed)} interrupted shop verification(s).")


@accounts_cli.command("create-admin")
@click.option("--name", prompt=True)
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def create_admin(name, email, password):
    db = current_app.extensions["store"]
    email = email.strip().lower()
    if db.users.find_one({"email": email}):
        raise click.ClickException("An account with this email already exists.")

    now = datetime.utcnow()
    try:
        inserted = db.users.insert_one(
            {
                "name": name.strip(),
                "email": email,
                "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()),
                "role": Role.ADMIN.value,
                "is_verified": True,
                "request_status": REQUEST_APPROVED,
                "is_blocked": False,
                "created_at": now,
                "updated_at": now,
            }
        )
    except DuplicateKeyError:
        raise click.ClickException("An account with this email already exists.")
    click.echo(f"Created admin {inserted.inserted_id}.")


def register_cli(app):
    app.cli.add_command(workflow_cli)
    app.cli.add_command(accounts_cli)
