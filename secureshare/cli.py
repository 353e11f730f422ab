import os
import sys
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, NoReturn, Optional

import typer

from secureshare import SecureShare, __version__
from secureshare.config import ConfigManager
from secureshare.errors import NotFoundError, RateLimitedError, SecureShareError, ValidationError
from secureshare.models import EXPIRATION_PRESETS, ContentType, SharePermission, User
from secureshare.utils.console import (
    configure_logging,
    console,
    create_activity_table,
    create_secrets_table,
    create_shares_table,
    print_error,
    print_info,
    print_panel,
    print_success,
    print_warning,
)

USER_AGENT = f"secureshare-cli/{__version__}"

app = typer.Typer(
    help="Share secrets with expiry, view limits and optional passwords",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    level = "DEBUG" if verbose else ConfigManager().load_config().log_level
    configure_logging(level)


def _fail(action: str, e: Exception) -> NoReturn:
    if isinstance(e, RateLimitedError):
        print_error(f"{action}: rate limit exceeded, retry after {e.retry_after}s")
    elif isinstance(e, ValidationError):
        print_error(f"{action}: invalid input: {e}")
    else:
        print_error(f"{action}: {e}")
    sys.exit(1)


@contextmanager
def _application() -> Iterator[SecureShare]:
    share = SecureShare.from_config()
    try:
        yield share
    finally:
        share.close()


def _resolve_user(share: SecureShare, email: str) -> User:
    user = share.storage.get_user_by_email(email)
    if user is None:
        raise NotFoundError(f"Unknown user: {email} (add it with 'secureshare user-add')")
    return user


@app.command()
def init() -> None:
    config_manager = ConfigManager()

    if config_manager.config_path is not None and os.path.exists(config_manager.config_path):
        print_warning(f"Already initialized in {config_manager.config_dir}")
        return

    try:
        config_manager.initialize()

        with _application() as share:
            health = share.health()

        print_success(f"Initialized secureshare in {config_manager.config_dir}")
        print_info(f"Database: {config_manager.get_database_url()}")
        print_info(f"Audit log: {config_manager.get_audit_path()}")
        if not health.connected:
            print_warning(f"Cache unreachable, running without it: {health.error}")

    except SecureShareError as e:
        _fail("Initialization failed", e)


@app.command("user-add")
def user_add(
    email: str = typer.Argument(..., help="User email"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
) -> None:
    try:
        with _application() as share:
            if share.storage.get_user_by_email(email):
                print_warning(f"User {email} already exists")
                return
            user = share.storage.create_user(email, name)

        print_success(f"Added user {user.email} ({user.id})")

    except SecureShareError as e:
        _fail("Failed to add user", e)


@app.command()
def create(
    title: str = typer.Argument(..., help="Secret title"),
    content: str = typer.Argument(..., help="Secret content"),
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Access password"),
    expires_in: Optional[str] = typer.Option(
        None, "--expires-in", help=f"Preset: {', '.join(EXPIRATION_PRESETS)}"
    ),
    expires_at: Optional[datetime] = typer.Option(None, "--expires-at", help="Exact expiry (UTC)"),
    max_views: Optional[int] = typer.Option(None, "--max-views", help="Maximum views"),
    one_time: bool = typer.Option(False, "--one-time", help="Deactivate after the first view"),
    public: bool = typer.Option(False, "--public", help="Mark as public"),
    file_name: Optional[str] = typer.Option(None, "--file-name", help="Store as a file secret"),
    ip: str = typer.Option("127.0.0.1", "--ip", help="Client address"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    data = {
        "title": title,
        "content": content,
        "description": description,
        "password": password,
        "expires_at": expires_at,
        "expires_in": expires_in,
        "max_views": max_views,
        "delete_after_view": one_time,
        "is_public": public,
    }
    if file_name:
        data["file_name"] = file_name
        data["content_type"] = ContentType.FILE

    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            secret = share.repository.create_secret(owner.id, data, ip_address=ip)

        if json_output:
            console.print_json(data=secret.to_metadata().model_dump(mode="json"))
        else:
            print_success(f"Created secret {secret.id}")
            if secret.expires_at:
                print_info(f"Expires: {secret.expires_at:%Y-%m-%d %H:%M} UTC")

    except SecureShareError as e:
        _fail("Failed to create secret", e)


@app.command()
def view(
    secret_id: str = typer.Argument(..., help="Secret id"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Access password"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Viewer email"),
    ip: str = typer.Option("127.0.0.1", "--ip", help="Client address"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only output the content"),
) -> None:
    try:
        with _application() as share:
            viewer_id = _resolve_user(share, user).id if user else None
            access = share.repository.access_secret(
                secret_id,
                ip_address=ip,
                user_agent=USER_AGENT,
                user_id=viewer_id,
                password=password,
            )

        secret = access.secret
        if quiet:
            print(secret.content)
        elif json_output:
            output = secret.model_dump(mode="json")
            output["should_delete_after_view"] = access.should_delete_after_view
            console.print_json(data=output)
        else:
            print_panel(secret.title, secret.content)
            if access.should_delete_after_view:
                print_warning("This secret has been deleted after viewing")

    except SecureShareError as e:
        _fail("Failed to view secret", e)


@app.command()
def info(
    secret_id: str = typer.Argument(..., help="Secret id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            secret = share.repository.get_secret(secret_id, include_content=False)
        if secret is None:
            raise NotFoundError()

        metadata = secret.to_metadata()
        if json_output:
            console.print_json(data=metadata.model_dump(mode="json"))
        else:
            console.print(create_secrets_table([metadata]))

    except SecureShareError as e:
        _fail("Failed to read secret", e)


@app.command("list")
def list_secrets(
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            secrets = share.repository.get_user_secrets(owner.id)

        if json_output:
            console.print_json(data=[s.model_dump(mode="json") for s in secrets])
            return

        if not secrets:
            print_info("No secrets found")
            return

        console.print(create_secrets_table(secrets))
        console.print(f"\n[dim]Total: {len(secrets)} secret(s)[/dim]")

    except SecureShareError as e:
        _fail("Failed to list secrets", e)


@app.command()
def update(
    secret_id: str = typer.Argument(..., help="Secret id"),
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    title: Optional[str] = typer.Option(None, "--title"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    content: Optional[str] = typer.Option(None, "--content"),
    password: Optional[str] = typer.Option(
        None, "--password", "-p", help="New password, empty string removes it"
    ),
    expires_at: Optional[datetime] = typer.Option(None, "--expires-at"),
    max_views: Optional[int] = typer.Option(None, "--max-views"),
    one_time: Optional[bool] = typer.Option(None, "--one-time/--no-one-time"),
    public: Optional[bool] = typer.Option(None, "--public/--private"),
) -> None:
    updates = {
        "title": title,
        "description": description,
        "content": content,
        "password": password,
        "expires_at": expires_at,
        "max_views": max_views,
        "delete_after_view": one_time,
        "is_public": public,
    }
    updates = {field: value for field, value in updates.items() if value is not None}
    if not updates:
        print_warning("Nothing to update")
        return

    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            share.repository.update_secret(secret_id, owner.id, updates)

        print_success(f"Updated {secret_id} ({', '.join(sorted(updates))})")

    except SecureShareError as e:
        _fail("Failed to update secret", e)


@app.command()
def delete(
    secret_id: str = typer.Argument(..., help="Secret id"),
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    if not force and not typer.confirm(f"Delete {secret_id}?"):
        print_info("Cancelled")
        return

    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            share.repository.delete_secret(secret_id, owner.id)

        print_success(f"Deleted {secret_id}")

    except SecureShareError as e:
        _fail("Failed to delete secret", e)


@app.command("share")
def share_secret(
    secret_id: str = typer.Argument(..., help="Secret id"),
    emails: list[str] = typer.Argument(..., help="Recipient emails"),
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    permission: SharePermission = typer.Option(
        SharePermission.VIEW, "--permission", case_sensitive=False
    ),
) -> None:
    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            shares = share.repository.share_secret(secret_id, owner.id, emails, permission)

        for record in shares:
            print_success(f"Shared {secret_id} with {record.email} ({record.permission.value})")

    except SecureShareError as e:
        _fail("Failed to share secret", e)


@app.command()
def shared(
    user: str = typer.Option(..., "--user", "-u", help="Recipient email"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            recipient = _resolve_user(share, user)
            shares = share.repository.get_shared_secrets(recipient.id)

        if json_output:
            console.print_json(data=[s.model_dump(mode="json") for s in shares])
        elif not shares:
            print_info("Nothing has been shared with you")
        else:
            console.print(create_shares_table(shares))

    except SecureShareError as e:
        _fail("Failed to list shared secrets", e)


@app.command()
def activity(
    user: str = typer.Option(..., "--user", "-u", help="User email"),
    limit: int = typer.Option(10, "--limit", "-n", help="Entries per page (1-100)"),
    offset: int = typer.Option(0, "--offset", help="Entries to skip"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            entries = share.repository.get_activity(owner.id, limit=limit, offset=offset)

        if json_output:
            console.print_json(data=[e.model_dump(mode="json") for e in entries])
        elif not entries:
            print_info("No activity found")
        else:
            console.print(create_activity_table(entries))

    except SecureShareError as e:
        _fail("Failed to read activity", e)


@app.command()
def stats(
    secret_id: str = typer.Argument(..., help="Secret id"),
    user: str = typer.Option(..., "--user", "-u", help="Owner email"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            owner = _resolve_user(share, user)
            access_stats = share.repository.get_access_stats(secret_id, owner.id)

        if json_output:
            console.print_json(data=access_stats.model_dump(mode="json"))
            return

        last = access_stats.last_accessed_at
        last_text = last.strftime("%Y-%m-%d %H:%M:%S") if last else "never"
        console.print(f"[cyan]Total accesses:[/cyan] {access_stats.total_accesses}")
        console.print(f"[cyan]Unique IPs:[/cyan] {access_stats.unique_ips}")
        console.print(f"[cyan]Views:[/cyan] {access_stats.current_views}")
        console.print(f"[cyan]Last access:[/cyan] {last_text}")

    except SecureShareError as e:
        _fail("Failed to read statistics", e)


@app.command("ratelimit-reset")
def ratelimit_reset(
    identifier: str = typer.Argument(..., help="Identifier, e.g. ip:1.2.3.4 or user:<id>"),
    policy: str = typer.Option(..., "--policy", help="Policy name, e.g. view_secret"),
) -> None:
    try:
        with _application() as share:
            share.rate_limiter.policy(policy)
            share.rate_limiter.reset(policy, identifier)

        print_success(f"Reset {policy} limit for {identifier}")

    except (ValueError, SecureShareError) as e:
        _fail("Failed to reset rate limit", e)


@app.command()
def health(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    try:
        with _application() as share:
            status = share.health()
    except SecureShareError as e:
        _fail("Health check failed", e)

    if json_output:
        console.print_json(data=status.model_dump(mode="json"))
    elif status.connected:
        print_success(f"Cache connected ({status.latency_ms} ms)")
    else:
        print_error(f"Cache unreachable: {status.error}")

    if not status.connected:
        sys.exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
