"""
AKS Deployer CLI.

Runs the deployment pipeline once, serves the GitHub webhook, scaffolds the
Dockerfile/Jenkinsfile/manifests for a Node.js app, and reports cluster state.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Settings
from .errors import DeployerError
from .kube_types import ImageReference

console = Console()

STATUS_STYLES = {
    "success": "bold green",
    "failure": "bold red",
    "skipped": "dim",
    "running": "yellow",
    "pending": "dim",
}


class DeployerCLI:
    """Translates subcommands into pipeline, scaffolding and cluster actions."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="aks-deployer",
            description="Build, push and deploy a Node.js app to Azure Kubernetes Service",
        )
        self._setup_args()

    def _setup_args(self):
        self.parser.add_argument("-v", "--version", action="version", version=f"aks-deployer v{__version__}")
        self.parser.add_argument("--env-file", help="Load settings from this dotenv file first")
        self.parser.add_argument("--log-level", help="Override LOG_LEVEL")
        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        run_parser = subparsers.add_parser("run", help="🚀 Run clone, build, push, deploy and verify once")
        run_parser.add_argument("--commit", help="Deploy this commit instead of the branch head")
        run_parser.add_argument("--tag", help="Image tag to use instead of the short commit SHA")

        serve_parser = subparsers.add_parser("serve", help="🔔 Listen for GitHub push webhooks")
        serve_parser.add_argument("--host", help="Bind address (default: HTTP_HOST)")
        serve_parser.add_argument("--port", type=int, help="Bind port (default: HTTP_PORT)")

        scaffold_parser = subparsers.add_parser("scaffold", help="📦 Write Dockerfile, Jenkinsfile and k8s manifests")
        scaffold_parser.add_argument("dest", help="Application source directory")
        scaffold_parser.add_argument("--force", action="store_true", help="Overwrite existing files")

        render_parser = subparsers.add_parser("render", help="📝 Render manifests for an image")
        render_parser.add_argument("image", help="Image reference, e.g. myuser/app:1.0.3")
        render_parser.add_argument("--source", default=".", help="Source checkout holding manifest templates")
        render_parser.add_argument("--out", default="rendered", help="Output directory")

        publish_parser = subparsers.add_parser("publish", help="⬆️ Commit and push application source")
        publish_parser.add_argument("source", help="Local git working copy")
        publish_parser.add_argument("-m", "--message", default="Update application", help="Commit message")
        publish_parser.add_argument("--remote", default="origin", help="Git remote")

        hook_parser = subparsers.add_parser("setup-webhook", help="🔗 Create the GitHub push webhook")
        hook_parser.add_argument("--url", help="Public webhook URL (default: WEBHOOK_PUBLIC_URL)")
        hook_parser.add_argument("--ping", action="store_true", help="Ask GitHub to send a ping delivery")

        subparsers.add_parser("status", help="🔍 Show rollout and pod state of the deployment")

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------
    def print_run(self, run):
        table = Table(title=f"Run {run.run_id}", show_lines=False)
        table.add_column("Stage", style="cyan")
        table.add_column("Status")
        table.add_column("Detail")
        for result in run.stages:
            style = STATUS_STYLES.get(result.status.value, "white")
            table.add_row(
                result.stage.value,
                f"[{style}]{result.status.value}[/{style}]",
                result.error or result.detail,
            )
        console.print(table)

        style = STATUS_STYLES.get(run.status.value, "white")
        image = run.image.ref if run.image else "-"
        console.print(Panel.fit(
            f"[{style}]{run.status.value.upper()}[/{style}]  image: [white]{image}[/white]",
            border_style="green" if run.status.value == "success" else "red",
        ))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def cmd_run(self, settings: Settings, args) -> int:
        from .pipeline import DeploymentPipeline

        if args.tag:
            settings.IMAGE_TAG = args.tag
        pipeline = DeploymentPipeline.from_settings(settings)
        run = pipeline.run(trigger="cli", commit=args.commit)
        self.print_run(run)
        return 0 if run.status.value == "success" else 1

    def cmd_serve(self, settings: Settings, args) -> int:
        import uvicorn

        from .fastapi_app import create_app

        app = create_app(settings)
        host = args.host or settings.HTTP_HOST
        port = args.port or settings.HTTP_PORT
        console.print(f"🔔 Listening for pushes to [bold]{settings.GIT_BRANCH}[/bold] on {host}:{port}{settings.WEBHOOK_PATH}")
        uvicorn.run(app, host=host, port=port, log_level=settings.LOG_LEVEL.lower())
        return 0

    def cmd_scaffold(self, settings: Settings, args) -> int:
        from .templates import scaffold

        written = scaffold(Path(args.dest), settings, force=args.force)
        for path in written:
            console.print(f"[green]✓[/green] {path}")
        return 0

    def cmd_render(self, settings: Settings, args) -> int:
        from .manifests import prepare_manifests

        image = ImageReference.parse(args.image)
        manifests = prepare_manifests(Path(args.source), settings, image, Path(args.out))
        console.print(f"[green]✓[/green] {manifests.deployment}")
        console.print(f"[green]✓[/green] {manifests.service}")
        return 0

    def cmd_publish(self, settings: Settings, args) -> int:
        from .commands import CommandRunner, GitCli

        git = GitCli(CommandRunner(timeout=settings.COMMAND_TIMEOUT_SECS))
        commit = git.publish(Path(args.source), args.message, settings.GIT_BRANCH, remote=args.remote)
        console.print(f"⬆️  Pushed [bold]{commit[:7]}[/bold] to {args.remote}/{settings.GIT_BRANCH}")
        return 0

    def cmd_setup_webhook(self, settings: Settings, args) -> int:
        from .github_integration import GitHubWebhooks

        url = args.url or settings.WEBHOOK_PUBLIC_URL
        if not url:
            console.print("[bold red]Error:[/bold red] pass --url or set WEBHOOK_PUBLIC_URL")
            return 2
        if not (settings.GITHUB_TOKEN and settings.GITHUB_OWNER and settings.GITHUB_REPOSITORY):
            console.print("[bold red]Error:[/bold red] GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPOSITORY are required")
            return 2

        hooks = GitHubWebhooks(settings.GITHUB_TOKEN, settings.GITHUB_OWNER, settings.GITHUB_REPOSITORY)
        hook = hooks.ensure_push_webhook(url, settings.GITHUB_WEBHOOK_SECRET)
        if args.ping:
            hooks.ping(hook["id"])
        console.print(f"🔗 Webhook {hook.get('id')} delivers pushes to {url}")
        return 0

    def cmd_status(self, settings: Settings, args) -> int:
        from .kube_client import KubeClient

        kube = KubeClient(namespace=settings.K8S_NAMESPACE, context=settings.K8S_CONTEXT)
        rollout = kube.rollout_status(settings.DEPLOYMENT_NAME)
        console.print(
            f"Deployment [bold]{rollout.deployment}[/bold]: {rollout.status} "
            f"({rollout.ready_replicas}/{rollout.desired_replicas} ready, {rollout.updated_replicas} updated)"
        )

        table = Table(title=f"Pods in {settings.K8S_NAMESPACE}")
        table.add_column("Name", style="cyan")
        table.add_column("Phase")
        table.add_column("Ready")
        for pod in kube.get_pods(label_selector=f"app={settings.APP_NAME}"):
            table.add_row(pod.name, pod.status or "Unknown", "✓" if pod.ready else "✗")
        console.print(table)
        return 0 if rollout.is_complete else 1

    def run(self, argv: Optional[List[str]] = None) -> int:
        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return 2

        if args.env_file:
            load_dotenv(args.env_file, override=True)
        settings = Settings()
        if args.log_level:
            settings.LOG_LEVEL = args.log_level

        logging.basicConfig(
            level=settings.LOG_LEVEL.upper(),
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

        handler = getattr(self, f"cmd_{args.command.replace('-', '_')}")
        try:
            return handler(settings, args)
        except (DeployerError, ValueError) as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            return 1


def main(argv: Optional[List[str]] = None) -> int:
    return DeployerCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
