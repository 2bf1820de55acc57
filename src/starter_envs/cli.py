#!/usr/bin/env python3
"""AWS Starter Kit environment setup - command line entry point.

Commands:
    setup-aws-envs              Create organization, accounts and deployment users
    initialize-github <env>     Publish an environment's credentials to GitHub

Both commands run inside a generated project directory and exit non-zero
on any unrecovered failure.
"""

import argparse
import getpass
import logging
import sys
from typing import Dict, List, Optional
from botocore.exceptions import BotoCoreError

from starter_envs import __version__
from starter_envs.core.aws_client import AWSClientManager
from starter_envs.core.config import Configuration, ConfigurationError
from starter_envs.core.errors import ProvisioningError
from starter_envs.core.events import EventStatus, ProgressEvent
from starter_envs.core.models import Environment
from starter_envs.core.retry import RetryPolicy
from starter_envs.core.state import StateStore
from starter_envs.github.secrets import (
    CIAuthenticationFailed,
    GitHubClient,
    SecretsPublisher,
    parse_github_repo,
)
from starter_envs.provisioning.accounts import derive_environment_emails
from starter_envs.provisioning.orchestrator import ProvisioningOrchestrator


STATUS_SYMBOLS = {
    EventStatus.STARTED: "⏳",
    EventStatus.INFO: "  ",
    EventStatus.SUCCEEDED: "✅",
    EventStatus.SKIPPED: "⏭️",
    EventStatus.WARNING: "⚠️",
    EventStatus.FAILED: "❌",
}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="starter-envs",
        description="AWS Starter Kit environment setup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s setup-aws-envs              # Create AWS accounts and deployment users
  %(prog)s initialize-github dev       # Configure GitHub Development environment
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"starter-envs v{__version__}",
    )
    parser.add_argument(
        "--project-dir",
        default=".",
        help="Project directory containing .aws-starter-config.json (default: current directory)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True

    subparsers.add_parser(
        "setup-aws-envs",
        help="Set up AWS Organizations, environment accounts and deployment users",
    )

    github = subparsers.add_parser(
        "initialize-github",
        help="Configure a GitHub Environment with deployment credentials",
    )
    github.add_argument(
        "environment",
        help="Environment name: " + ", ".join(env.value for env in Environment),
    )

    return parser.parse_args(argv)


def render_event(event: ProgressEvent) -> None:
    """Print a progress event to the console."""
    symbol = STATUS_SYMBOLS.get(event.status, "❓")
    stream = sys.stderr if event.status == EventStatus.FAILED else sys.stdout
    print(f"{symbol} {event.detail}", file=stream)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_email_resolver(config: Configuration):
    """Build the email resolver used for accounts that must be created.

    Explicit per-environment emails win, then emails derived from the
    configured root email; if neither is configured the operator is
    prompted for a root email.
    """
    def resolve(missing: List[Environment]) -> Dict[Environment, str]:
        emails = {}
        root_email = config.get_root_email()
        explicit = config.get_environment_emails()

        if root_email is None and any(env not in explicit for env in missing):
            print("\nEach AWS account needs a unique root email address.")
            print("Addresses are derived as <name>-<env>@<domain>.")
            root_email = input("Root email address: ").strip()

        derived = derive_environment_emails(root_email, missing) if root_email else {}
        for env in missing:
            emails[env] = explicit.get(env) or derived.get(env)
        return emails

    return resolve


def run_setup_aws_envs(args: argparse.Namespace, config: Configuration) -> int:
    """Run the provisioning command."""
    store = StateStore.for_project(args.project_dir)
    state = store.load()
    region = config.get_region() or state.aws_region

    aws_client = AWSClientManager(
        profile_name=config.get_profile_name(),
        region_name=region,
    )
    orchestrator = ProvisioningOrchestrator(
        aws_client,
        store,
        email_resolver=build_email_resolver(config),
        retry_policy=RetryPolicy(**config.get_retry_settings()),
        reporter=render_event,
        bootstrap_cdk=config.cdk_bootstrap_enabled(),
        project_dir=args.project_dir,
    )
    result = orchestrator.run()

    print("\nEnvironment accounts:")
    for env in Environment.ordered():
        print(f"  {env.value:<6} {result.accounts[env]}")
    print("\nNext step: starter-envs initialize-github <env>")
    return 0


def run_initialize_github(args: argparse.Namespace, config: Configuration) -> int:
    """Run the secrets publish command for one environment."""
    try:
        environment = Environment.parse(args.environment)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    store = StateStore.for_project(args.project_dir)
    state = store.load()
    credentials = SecretsPublisher.credentials_for(state, environment)

    repo_spec = config.get_github_repo() or input("GitHub repository (owner/repo): ").strip()
    try:
        repo = parse_github_repo(repo_spec)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    token = config.get_github_token() or getpass.getpass("GitHub token (repo scope): ").strip()
    if not token:
        print("❌ A GitHub token is required.", file=sys.stderr)
        return 1

    publisher = SecretsPublisher(GitHubClient(token), reporter=render_event)
    publisher.publish(repo, environment, credentials)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_arguments(argv)
    configure_logging(args.verbose)

    try:
        config = Configuration(project_dir=args.project_dir)

        if args.command == "setup-aws-envs":
            return run_setup_aws_envs(args, config)
        return run_initialize_github(args, config)

    except KeyboardInterrupt:
        print("\n\n👋 Operation cancelled by user.")
        return 130

    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1

    except CIAuthenticationFailed as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    except ProvisioningError as e:
        print(f"\n❌ {e}", file=sys.stderr)
        print("   Fix the issue above and re-run; completed steps are skipped.", file=sys.stderr)
        return 1

    except BotoCoreError as e:
        print(f"\n❌ AWS request failed: {e}", file=sys.stderr)
        print("   Check your network connection and AWS credentials, then re-run.", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\n❌ Unexpected error: {e}", file=sys.stderr)
        print("   Please check your configuration and try again.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
