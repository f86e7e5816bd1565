"""
CLI parser setup.
"""

import argparse

from .escalations import cmd_escalations_list, cmd_escalations_respond
from .workflow import cmd_architecture, cmd_resume, cmd_run, cmd_status, cmd_validate


def setup_parser():
    parser = argparse.ArgumentParser(
        prog="work-by-steps",
        description="Resumable step workflow engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run workflows/create-story/workflow.yaml --var story_id=1.2
  %(prog)s resume workflows/create-story/workflow.yaml --id create-story-1a2b3c4d
  %(prog)s status create-story-1a2b3c4d
  %(prog)s architecture docs/prd.md
  %(prog)s escalations list --status pending
        """
    )

    parser.add_argument("--workspace", "-w", help="Workspace path (default: current directory)")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # run
    run_parser = subparsers.add_parser("run", help="Run a workflow from the first step")
    run_parser.add_argument("workflow", help="workflow.yaml or instruction markup file")
    run_parser.add_argument("--id", help="Workflow instance id (default: <name>-<random>)")
    run_parser.add_argument("--fast", action="store_true", help="Fast mode: skip optional steps and prompts")
    run_parser.add_argument("--var", action="append", default=[], metavar="KEY=VALUE",
                            help="Set a workflow variable (repeatable)")
    run_parser.add_argument("--echo-agent", action="store_true",
                            help="Send instructions to a placeholder agent that echoes them")
    run_parser.set_defaults(func=cmd_run)

    # resume
    resume_parser = subparsers.add_parser("resume", help="Resume a workflow from its last checkpoint")
    resume_parser.add_argument("workflow", help="workflow.yaml or instruction markup file")
    resume_parser.add_argument("--id", required=True, help="Workflow instance id")
    resume_parser.add_argument("--fast", action="store_true", help="Fast mode: skip optional steps and prompts")
    resume_parser.add_argument("--echo-agent", action="store_true",
                               help="Send instructions to a placeholder agent that echoes them")
    resume_parser.set_defaults(func=cmd_resume)

    # status
    status_parser = subparsers.add_parser("status", help="Show a workflow checkpoint")
    status_parser.add_argument("id", help="Workflow instance id")
    status_parser.set_defaults(func=cmd_status)

    # validate
    validate_parser = subparsers.add_parser("validate", help="Parse a workflow and every step body")
    validate_parser.add_argument("workflow", help="workflow.yaml or instruction markup file")
    validate_parser.set_defaults(func=cmd_validate)

    # architecture
    architecture_parser = subparsers.add_parser("architecture", help="Run the nine-step architecture workflow")
    architecture_parser.add_argument("prd", help="Path to the PRD markdown file")
    architecture_parser.add_argument("--id", help="Workflow instance id")
    architecture_parser.add_argument("--output", "-o", default="docs/architecture.md",
                                     help="Architecture document path (default: docs/architecture.md)")
    architecture_parser.add_argument("--template", help="Architecture template markdown file")
    architecture_parser.add_argument("--resume", action="store_true", help="Resume the run given by --id")
    architecture_parser.set_defaults(func=cmd_architecture)

    # escalations
    escalations_parser = subparsers.add_parser("escalations", help="Inspect and answer escalations")
    escalation_commands = escalations_parser.add_subparsers(dest="escalation_command")

    list_parser = escalation_commands.add_parser("list", help="List escalations")
    list_parser.add_argument("--status", choices=["pending", "resolved", "cancelled"], help="Filter by status")
    list_parser.add_argument("--workflow", help="Filter by workflow id")
    list_parser.set_defaults(func=cmd_escalations_list)

    respond_parser = escalation_commands.add_parser("respond", help="Resolve a pending escalation")
    respond_parser.add_argument("escalation_id", help="Escalation id")
    respond_parser.add_argument("response", help="Response text")
    respond_parser.set_defaults(func=cmd_escalations_respond)

    return parser
