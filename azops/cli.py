"""Main CLI entrypoint for azops."""

import json
import logging
import sys
from typing import Any, Dict

import click

from .aks import RestartError, restart_deployment
from .auth import SubscriptionContext, get_credential
from .cleanup import run_cleanup
from .config import load_settings
from .events import read_events
from .rotation import DEFAULT_SECRET_BYTES, RotationError, rotate_secret
from .state import list_runs
from .subscriptions import iter_subscriptions
from .tags import parse_user_tags
from .vault_audit import export_access_policies

logger = logging.getLogger(__name__)


@click.group()
@click.option('--config', 'config_path', type=click.Path(), help='YAML config file')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, config_path, output_json, verbose):
    """azops - Azure operational scripts."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        # The SDK logs every HTTP request at INFO
        logging.getLogger("azure").setLevel(logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config_path
    ctx.obj['json'] = output_json


def _json_output(data: Dict[str, Any]) -> None:
    """Output data as JSON."""
    click.echo(json.dumps(data, default=str))


def _human_output(message: str) -> None:
    """Output human-readable message."""
    if not click.get_current_context().obj.get('json', False):
        click.echo(message)


def _fail(message: str, code: int = 1) -> None:
    if click.get_current_context().obj.get('json', False):
        _json_output({'error': message})
    else:
        click.echo(f"❌ {message}", err=True)
    sys.exit(code)


@main.command('restart-deployment')
@click.option('--resource-group', '-g', required=True, help='Resource group of the AKS cluster')
@click.option('--cluster', '-n', required=True, help='AKS cluster name')
@click.option('--namespace', required=True, help='Kubernetes namespace')
@click.option('--deployment', required=True, help='Deployment to restart')
@click.option('--subscription', help='Subscription of the cluster')
@click.option('--timeout', type=int, default=600, show_default=True, help='Seconds to wait for the command')
@click.pass_context
def restart_deployment_cmd(ctx, resource_group, cluster, namespace, deployment, subscription, timeout):
    """Restart a deployment inside an AKS cluster."""
    try:
        settings = load_settings(ctx.obj['config'])
        subscription = subscription or (settings.subscriptions[0] if settings.subscriptions else None)
        if not subscription:
            _fail("No subscription given; use --subscription or AZURE_SUBSCRIPTION_ID")
        
        _human_output(f"🔄 Restarting deployment: {deployment} in namespace: {namespace}...")
        sub_ctx = SubscriptionContext(get_credential(), subscription)
        result = restart_deployment(sub_ctx, resource_group, cluster, namespace, deployment, timeout=timeout)
    except RestartError as e:
        if e.logs:
            _human_output(e.logs)
        _fail(f"Restart failed: {e}")
    except (ValueError, FileNotFoundError) as e:
        _fail(str(e))
    
    if ctx.obj['json']:
        _json_output({'status': 'success', 'deployment': deployment, 'namespace': namespace,
                      'cluster': cluster, 'logs': result.logs})
    else:
        if result.logs:
            click.echo(result.logs.rstrip())
        _human_output("✅ Restart triggered successfully via AKS run command.")


@main.command('cleanup-rgs')
@click.option('--subscription', '-s', 'subscriptions', multiple=True, help='Subscription ID (repeatable)')
@click.option('--pattern', '-p', 'patterns', multiple=True, help='Resource group name glob (repeatable)')
@click.option('--days', 'inactive_days', type=int, help='Inactivity threshold in days')
@click.option('--delete', is_flag=True, help='Delete eligible groups instead of tagging them')
@click.option('--wait', 'wait_for_deletion', is_flag=True, help='Wait for deletions to finish')
@click.option('--tag', 'tags', multiple=True, help="Extra tag 'key=value' for marked groups (repeatable)")
@click.option('--output', '-o', 'report_path', help='Report path (.csv or .xlsx)')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def cleanup_rgs_cmd(ctx, subscriptions, patterns, inactive_days, delete, wait_for_deletion, tags, report_path, yes):
    """Find idle resource groups and tag or delete them."""
    try:
        extra_tags = parse_user_tags(list(tags)) if tags else None
        settings = load_settings(
            ctx.obj['config'],
            subscriptions=subscriptions,
            patterns=patterns,
            inactive_days=inactive_days,
            delete=delete or None,
            wait_for_deletion=wait_for_deletion or None,
            report_path=report_path,
            extra_tags=extra_tags,
        )
    except (ValueError, FileNotFoundError) as e:
        _fail(f"Invalid configuration: {e}")
    
    if settings.delete and not yes:
        if not click.confirm(f"Delete resource groups matching {settings.patterns} idle for {settings.inactive_days}+ days?"):
            _human_output("❌ Cleanup cancelled")
            return
    
    mode = "delete" if settings.delete else "mark"
    _human_output(f"🔍 Scanning for resource groups matching {', '.join(settings.patterns)} "
                  f"idle {settings.inactive_days}+ days (mode: {mode})")
    
    try:
        result = run_cleanup(get_credential(), settings)
    except Exception as e:
        logger.exception("Cleanup run failed")
        _fail(f"Cleanup failed: {e}")
    
    counts = result.report.counts()
    if ctx.obj['json']:
        _json_output({'run_id': result.run_id, 'report': result.report_path, 'counts': counts,
                      'errors': result.errors})
    else:
        for record in result.report.records:
            days = "?" if record.days_inactive is None else record.days_inactive
            click.echo(f"  {record.status.value:<28} {record.resource_group} ({days} days, {record.subscription_id})")
        _human_output(f"📄 Report: {result.report_path} ({len(result.report)} rows, run {result.run_id})")
        if result.errors:
            _human_output(f"⚠️  {result.errors} resource group(s) could not be evaluated; see logs")


@main.command('rotate-secret')
@click.option('--vault', required=True, help='Key Vault name')
@click.option('--secret', required=True, help='Secret name')
@click.option('--subscription', '-s', 'subscriptions', multiple=True, help='Subscription to search for bound apps (repeatable)')
@click.option('--length', 'num_bytes', type=int, default=DEFAULT_SECRET_BYTES, show_default=True, help='Random bytes in the new value')
@click.option('--no-restart', is_flag=True, help='Do not restart apps using unversioned references')
@click.pass_context
def rotate_secret_cmd(ctx, vault, secret, subscriptions, num_bytes, no_restart):
    """Rotate a Key Vault secret and update bound web apps."""
    try:
        settings = load_settings(ctx.obj['config'], subscriptions=subscriptions)
        credential = get_credential()
        _human_output(f"🔑 Rotating secret {secret} in {vault}...")
        result = rotate_secret(
            credential,
            vault,
            secret,
            iter_subscriptions(credential, settings.subscriptions),
            num_bytes=num_bytes,
            restart=not no_restart,
        )
    except (RotationError, ValueError, FileNotFoundError) as e:
        _fail(f"Rotation failed: {e}")
    
    if ctx.obj['json']:
        _json_output({
            'run_id': result.run_id,
            'version': result.version,
            'updated_apps': result.updated_apps,
            'restarted_apps': result.restarted_apps,
            'failed_apps': result.failed_apps,
        })
    else:
        _human_output(f"✅ New version: {result.version}")
        for app in result.updated_apps:
            _human_output(f"  updated   {app}")
        for app in result.restarted_apps:
            _human_output(f"  restarted {app}")
        for app in result.failed_apps:
            _human_output(f"  ❌ failed  {app}")
    
    if result.failed_apps:
        sys.exit(1)


@main.command('audit-vaults')
@click.option('--subscription', '-s', 'subscriptions', multiple=True, help='Subscription ID (repeatable)')
@click.option('--output', '-o', 'audit_path', help='Output spreadsheet (.xlsx or .csv)')
@click.pass_context
def audit_vaults_cmd(ctx, subscriptions, audit_path):
    """Export Key Vault access policies to a spreadsheet."""
    try:
        settings = load_settings(ctx.obj['config'], subscriptions=subscriptions, audit_path=audit_path)
        credential = get_credential()
        path, rows = export_access_policies(iter_subscriptions(credential, settings.subscriptions), settings.audit_path)
    except (ValueError, FileNotFoundError) as e:
        _fail(f"Audit failed: {e}")
    
    vaults = {(r['subscription'], r['vault']) for r in rows}
    if ctx.obj['json']:
        _json_output({'output': str(path), 'vaults': len(vaults), 'rows': len(rows)})
    else:
        _human_output(f"📄 Exported {len(rows)} access policy rows for {len(vaults)} vaults to {path}")


@main.command('events')
@click.argument('run_id', required=False)
@click.pass_context
def events_cmd(ctx, run_id):
    """Show the event trail of a run (latest run if omitted)."""
    if not run_id:
        runs = list_runs()
        if not runs:
            _fail("No runs found", code=2)
        run_id = runs[0]
    
    try:
        events = read_events(run_id)
    except ValueError as e:
        _fail(str(e), code=2)
    
    if not events:
        _fail(f"Run {run_id} not found", code=2)
    
    for event in events:
        if ctx.obj['json']:
            _json_output(event)
        else:
            ts = event.get('ts', '')[11:19]
            data = ", ".join(f"{k}={v}" for k, v in event.get('data', {}).items())
            click.echo(f"[{ts}] {click.style(event.get('type', 'UNKNOWN'), fg=_event_color(event))}: {data}")


def _event_color(event: Dict[str, Any]) -> str:
    event_type = event.get('type', '')
    if event_type.endswith('ERROR') or event_type.endswith('FAILED'):
        return 'red'
    if event_type in ('RG_DELETE_SUBMITTED', 'SECRET_ROTATED', 'AKS_RESTART_DONE'):
        return 'green'
    if event_type.startswith('RG_'):
        return 'yellow'
    return 'white'


if __name__ == '__main__':
    main()
