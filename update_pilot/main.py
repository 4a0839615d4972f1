"""Main entry point for the update-pilot CLI."""

import argparse
import asyncio
import logging
import sys
from typing import Callable, List, Optional

from . import __version__
from .api import ManagerApiClient
from .config import ManagerSettings, SiteConfigLoader, SiteProfile
from .engine import WorkflowEngine, WorkflowEvent
from .errors import UpdatePilotError
from .models import Step, StepStatus, WorkflowConfig, WorkflowState
from .utils.migration_summary import summarize_migration
from .utils.summaries import summarize_step
from .utils.time_utils import format_duration

STATUS_ICONS = {
    StepStatus.PENDING: "⏳",
    StepStatus.ACTIVE: "🔄",
    StepStatus.COMPLETE: "✅",
    StepStatus.ERROR: "❌",
    StepStatus.SKIPPED: "⏭️ ",
    StepStatus.CANCELLED: "🚫",
    StepStatus.USER_ACTION_REQUIRED: "✋",
}

EXIT_COMPLETE = 0
EXIT_ERROR = 1
EXIT_STOPPED = 2


def build_workflow_config(
    args: argparse.Namespace, profile: Optional[SiteProfile] = None
) -> WorkflowConfig:
    """Combine profile defaults with command line flags; a flag can only switch an option on."""
    defaults = profile.workflow if profile else WorkflowConfig()
    return WorkflowConfig(
        perform_dry_run=args.dry_run or defaults.perform_dry_run,
        skip_composer=args.skip_composer or defaults.skip_composer,
        with_deletes=args.with_deletes or defaults.with_deletes,
        unroll_migration_cycles=args.unroll_migrations or defaults.unroll_migration_cycles,
    )


def format_step_line(step: Step) -> str:
    icon = STATUS_ICONS.get(step.status, "•")
    line = f"{icon} {step.title}"
    summary = summarize_step(step)
    if summary:
        line += f": {summary}"
    duration = format_duration(step.duration)
    if duration:
        line += f" ({duration})"
    return line


def format_state_output(state: WorkflowState) -> str:
    """Format the step list and the overall outcome for display."""
    output = [format_step_line(step) for step in state.steps]
    output.append("")

    if state.is_complete:
        output.append("✅ Update workflow complete")
    elif state.error:
        output.append(f"❌ Workflow halted: {state.error}")
    elif any(step.status == StepStatus.CANCELLED for step in state.steps):
        output.append("🚫 Workflow cancelled")
    else:
        output.append("⏸️  Workflow stopped before completion")

    for step in state.steps:
        for entry in step.migration_history:
            output.append(
                f"  • {step.id} cycle {entry.cycle} {entry.step_type}: {entry.status.value}"
            )
    return "\n".join(output)


def exit_code_for(state: WorkflowState) -> int:
    if state.is_complete:
        return EXIT_COMPLETE
    if state.error or any(step.status == StepStatus.ERROR for step in state.steps):
        return EXIT_ERROR
    return EXIT_STOPPED


def describe_pause(state: WorkflowState) -> List[str]:
    lines = []
    step = state.find_step(state.awaiting_step_id) if state.awaiting_step_id else None
    if step is not None:
        lines.append(f"✋ {step.title} needs your decision")
        if step.error:
            lines.append(f"   {step.error}")
        summary = summarize_migration(step.data)
        if summary is not None:
            lines.append(f"   {summary.describe()}")
            for category, count in summary.counts().items():
                lines.append(f"     {category}: {count}")
        elif summarize_step(step):
            lines.append(f"   {summarize_step(step)}")
    for index, action in enumerate(state.pending_actions, start=1):
        text = f"  {index}. {action.label}"
        if action.description:
            text += f" - {action.description}"
        lines.append(text)
    return lines


def choose_action(
    state: WorkflowState, assume_yes: bool = False, prompt: Callable[[str], str] = input
) -> Optional[str]:
    """
    Ask the operator which pending action to run.

    Returns the action id, or None to leave the workflow where it is. With
    ``assume_yes`` the primary action is picked without asking; destructive
    actions always need an explicit answer.
    """
    actions = state.pending_actions
    print("\n".join(describe_pause(state)))

    if assume_yes:
        for action in actions:
            if action.variant == "primary":
                print(f"➡️  Auto-selecting: {action.label}")
                return action.id
        print("⚠️  No safe default action, stopping here")
        return None

    while True:
        answer = prompt(f"Choose an action [1-{len(actions)}, q to quit]: ").strip().lower()
        if answer in ("q", "quit", ""):
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(actions):
            return actions[int(answer) - 1].id
        print(f"Please enter a number between 1 and {len(actions)}")


def print_step_event(event: WorkflowEvent) -> None:
    step = event.state.find_step(event.step_id) if event.step_id else None
    if step is None:
        return
    if event.name == "item_started":
        print(f"🔄 {step.title}...")
    else:
        print(format_step_line(step))


async def run_update(
    api: ManagerApiClient,
    config: WorkflowConfig,
    settings: Optional[ManagerSettings] = None,
    assume_yes: bool = False,
    prompt: Callable[[str], str] = input,
) -> WorkflowState:
    """Drive one workflow run to its end, asking the operator at every pause."""
    engine = WorkflowEngine(api, settings)
    for event_name in ("item_started", "item_completed", "item_error"):
        engine.on(event_name, print_step_event)

    engine.initialize(config)
    await engine.start()

    while True:
        await engine.join()
        state = engine.get_state()
        if not state.pending_actions:
            return state

        action_id = choose_action(state, assume_yes=assume_yes, prompt=prompt)
        if action_id is None:
            return state

        try:
            await engine.handle_user_action(action_id)
        except UpdatePilotError as e:
            print(f"❌ Action failed: {e}")
            return engine.get_state()


async def update_site(
    settings: ManagerSettings,
    config: WorkflowConfig,
    assume_yes: bool = False,
    prompt: Callable[[str], str] = input,
) -> WorkflowState:
    async with ManagerApiClient(
        settings.base_url,
        api_token=settings.api_token,
        timeout=settings.request_timeout,
    ) as api:
        return await run_update(
            api, config, settings=settings, assume_yes=assume_yes, prompt=prompt
        )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Run the update workflow against a remote management API"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--url", help="Base URL of the management API")
    parser.add_argument("--site", "-s", help="Name of a site profile to load")
    parser.add_argument(
        "--list-sites", action="store_true", help="List available site profiles"
    )
    parser.add_argument("--token", help="API token (overrides the environment)")
    parser.add_argument(
        "--dry-run", action="store_true", help="Run a composer dry-run before updating"
    )
    parser.add_argument(
        "--skip-composer", action="store_true", help="Skip the composer steps"
    )
    parser.add_argument(
        "--with-deletes",
        action="store_true",
        help="Allow migrations that remove data when confirming",
    )
    parser.add_argument(
        "--unroll-migrations",
        action="store_true",
        help="Add a new step pair for every migration cycle",
    )
    parser.add_argument(
        "--yes", "-y", action="store_true", help="Answer confirmations with the primary action"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    loader = SiteConfigLoader()
    if args.list_sites:
        sites = loader.list_available_sites()
        if not sites:
            print("No site profiles found.")
        for site in sites:
            print(f"  • {site}")
        return EXIT_COMPLETE

    print("🚀 Update Pilot")
    print("=" * 50)

    try:
        settings = ManagerSettings.from_env()
        profile = loader.load_site(args.site) if args.site else None
        if profile is not None:
            settings.base_url = profile.url
            settings.api_token = profile.resolve_token() or settings.api_token
        if args.url:
            settings.base_url = args.url
        if args.token:
            settings.api_token = args.token

        if not settings.base_url:
            print("❌ No API URL given. Use --url, --site or UPDATE_PILOT_URL.")
            return EXIT_ERROR

        config = build_workflow_config(args, profile)
        print(f"🌐 {settings.base_url}")

        state = asyncio.run(update_site(settings, config, assume_yes=args.yes))
        print()
        print(format_state_output(state))
        return exit_code_for(state)
    except KeyboardInterrupt:
        print("\n⏹️  Interrupted")
        return EXIT_STOPPED
    except Exception as e:
        print(f"Critical Error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
