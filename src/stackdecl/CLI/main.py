"""
Command Line Interface for stackdecl.
"""
import os
import sys
import click
from ..PARSERS.manifest_parser import ManifestParser
from ..MODELS.service_declaration import ManifestError
from ..VALIDATORS.topology_validator import TopologyValidator
from ..MANAGERS.provision_manager import ProvisionManager
from ..CONVERTERS.to_compose import ComposeConverter
from ..CONVERTERS.to_report import ReportConverter


def _fail(message):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _manifest(ctx):
    """
    Returns the parsed manifest, failing the command when it is missing or invalid.
    """
    if ctx.obj.get('error'):
        _fail(ctx.obj['error'])
    return ctx.obj['manifest']


def _emit(text, out):
    if out:
        parent = os.path.dirname(out)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(out, 'w') as f:
            f.write(text)
        click.echo(f"Written to {out}")
    else:
        click.echo(text, nl=False)


@click.group()
@click.option('--file', '-f', default='docker-compose.yml', envvar='STACKDECL_FILE', help='Manifest file path')
@click.option('--env-file', default=None, envvar='STACKDECL_ENV_FILE', help='.env file used for interpolation')
@click.pass_context
def cli(ctx, file, env_file):
    """
    stackdecl - inspect and check static service topologies.

    Reads a docker-compose style deployment manifest, including commented-out
    service declarations, without running any container.
    """
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['base_dir'] = os.path.dirname(os.path.abspath(file))
    ctx.obj['error'] = None
    if not os.path.exists(file):
        ctx.obj['error'] = f"{file} not found."
        return
    try:
        ctx.obj['manifest'] = ManifestParser(env_file=env_file).parse(file)
    except (ManifestError, FileNotFoundError) as e:
        ctx.obj['error'] = str(e)


@cli.command()
@click.option('--all', 'show_all', is_flag=True, help='Include disabled services')
@click.pass_context
def services(ctx, show_all):
    """List declared services."""
    manifest = _manifest(ctx)
    click.echo(f"{'SERVICE':15} {'STATUS':10} {'IMAGE'}")
    click.echo("-" * 50)
    for svc in manifest.all_declarations():
        if not svc.enabled and not show_all:
            continue
        state = 'active' if svc.enabled else 'disabled'
        click.echo(f"{svc.name:15} {state:10} {svc.image}")
    for warning in manifest.warnings:
        click.echo(f"Warning: {warning}", err=True)


@cli.command()
@click.option('--data-dir', default=None, envvar='STACKDECL_DATA_DIR',
              help='Directory persistent state must live under')
@click.option('--strict-images', is_flag=True, help='Treat unpinned images as errors')
@click.pass_context
def validate(ctx, data_dir, strict_images):
    """Check names, ports, volume paths and images."""
    manifest = _manifest(ctx)
    validator = TopologyValidator(base_dir=ctx.obj['base_dir'], data_dir=data_dir, strict_images=strict_images)
    report = validator.validate(manifest)
    for violation in report.violations:
        click.echo(str(violation))
    click.echo(f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)")
    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option('--apply', 'apply_', is_flag=True, help='Create missing host directories')
@click.pass_context
def provision(ctx, apply_):
    """Show what the host must provide."""
    manager = ProvisionManager(_manifest(ctx), base_dir=ctx.obj['base_dir'])
    plan = manager.plan()

    click.echo("Directories:")
    for d in plan.directories:
        click.echo(f"  {d.source:30} {d.service}")
    click.echo("Files:")
    for f in plan.files:
        click.echo(f"  {f.source:30} {f.service}")
    click.echo("Ports:")
    for p in plan.ports:
        click.echo(f"  {p.label:30} {p.service}")

    if apply_:
        missing = manager.apply()
    else:
        missing = manager.missing()
    for path in missing:
        click.echo(f"Missing: {path.source} ({path.service})")
    if apply_ and missing:
        sys.exit(1)


@cli.command()
@click.pass_context
def ports(ctx):
    """Check host port availability."""
    manager = ProvisionManager(_manifest(ctx), base_dir=ctx.obj['base_dir'])
    click.echo(f"{'PORT':12} {'SERVICE':15} {'STATUS'}")
    click.echo("-" * 50)
    for status in manager.check_ports():
        port = status.port.label
        if status.free:
            state = 'free'
        elif status.owner_pid:
            state = f"in use by {status.owner_name or '?'} (pid {status.owner_pid})"
        else:
            state = 'in use'
        click.echo(f"{port:12} {status.port.service:15} {state}")


@cli.command()
@click.option('--format', '-t', 'fmt', type=click.Choice(['compose', 'report']), default='compose')
@click.option('--out', '-o', default=None, help='Output file (default: stdout)')
@click.pass_context
def render(ctx, fmt, out):
    """Re-express the manifest in another form."""
    manifest = _manifest(ctx)
    if fmt == 'compose':
        text = ComposeConverter(manifest).render()
    else:
        text = ReportConverter(manifest, base_dir=ctx.obj['base_dir']).render()
    _emit(text, out)


@cli.command()
@click.argument('name')
@click.option('--out', '-o', default=None, help='Output file (default: stdout)')
@click.pass_context
def toggle(ctx, name, out):
    """Enable a commented-out service, or comment out an active one."""
    manifest = _manifest(ctx)
    try:
        if name in manifest.services:
            manifest = manifest.deactivate(name)
        else:
            manifest = manifest.activate(name)
    except (KeyError, ManifestError) as e:
        _fail(e.args[0] if e.args else e)
    _emit(ComposeConverter(manifest).render(), out)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
