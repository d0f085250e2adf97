"""TableDM host console.

A terminal front end for the table's host: shows the combat tracker for
one session and sends player actions through the narrator.

    python -m tabledm.main <session-id-or-code>
"""

import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .agents.narrator import narrate_action
from .config import Config
from .core.combat import CombatState
from .core.combat_service import get_combat_service
from .core.errors import NotFound, TableDMError
from .db.session import init_db
from .db.session_store import get_session_store
from .enums import CombatantKind, CombatPhase
from .llm import get_llm_manager

console = Console()


def print_banner():
    """Print the TableDM banner."""
    banner = Text()
    banner.append("TableDM", style="bold cyan")
    banner.append(" - host console\n", style="cyan")
    banner.append("Type 'help' for commands", style="dim")

    console.print(Panel(banner, border_style="cyan", padding=(0, 2)))


def print_provider_info() -> bool:
    """Print the narrator's LLM provider, or why narration is unavailable."""
    if not Config.get_available_providers():
        console.print("[yellow]No LLM provider configured; narration is disabled[/yellow]")
        return False
    try:
        provider, model = get_llm_manager().get_provider_for_agent("narrator")
    except ValueError as e:
        console.print(f"[red]LLM Error: {e}[/red]")
        return False

    console.print(f"[dim]LLM Provider: [green]{provider.name}[/green][/dim]")
    console.print(f"[dim]Narrator Model: {model}[/dim]")
    return True


def print_help():
    """Print available commands."""
    console.print("\n[dim]Commands:[/dim]")
    console.print("  [yellow]state[/yellow]    - Show the combat tracker")
    console.print("  [yellow]roll[/yellow]     - Roll initiative for every enemy")
    console.print("  [yellow]next[/yellow]     - End the current turn")
    console.print("  [yellow]end[/yellow]      - End combat")
    console.print("  [yellow]quit[/yellow]     - Exit")
    console.print("  anything else is narrated as a player action\n")


def render_combat(state: CombatState) -> Table | Panel:
    """Build the combat tracker: initiative order, HP and conditions."""
    if state.phase == CombatPhase.IDLE:
        return Panel("[dim]No combat in progress[/dim]", border_style="dim")

    title = (
        "Awaiting initiative"
        if state.phase == CombatPhase.AWAITING_INITIATIVE
        else f"Round {state.round}"
    )
    table = Table(title=title, show_lines=False)
    table.add_column("", width=2)
    table.add_column("Init", justify="right")
    table.add_column("Name")
    table.add_column("HP", justify="right")
    table.add_column("AC", justify="right")
    table.add_column("Conditions")

    current = state.current_participant
    if state.initiative_order:
        rows = [(ref.id, ref.kind) for ref in state.initiative_order]
    else:
        rows = [(p.character_id, CombatantKind.PLAYER) for p in state.combatants.players]
        rows += [(e.id, CombatantKind.ENEMY) for e in state.combatants.enemies]

    for combatant_id, kind in rows:
        combatant = (
            state.find_player(combatant_id) if kind == CombatantKind.PLAYER
            else state.find_enemy(combatant_id)
        )
        if combatant is None:
            continue
        down = combatant.current_hp == 0
        style = "dim strike" if down and kind == CombatantKind.ENEMY else ("green" if kind == CombatantKind.PLAYER else "red")
        table.add_row(
            ">" if current is not None and current.id == combatant_id else "",
            "-" if combatant.initiative is None else str(combatant.initiative),
            Text(combatant.name, style=style),
            f"{combatant.current_hp}/{combatant.max_hp}",
            str(combatant.ac),
            ", ".join(combatant.conditions),
        )
    return table


def _resolve_session_id(ref: str) -> str:
    store = get_session_store()
    try:
        return store.get(ref)["id"]
    except NotFound:
        return store.get_by_code(ref)["id"]


async def console_loop(session_id: str):
    """Main host loop."""
    service = get_combat_service()
    console.print(render_combat(service.get_state(session_id).state))

    while True:
        try:
            line = console.input("[bold yellow]> [/bold yellow]").strip()
            command = line.lower()

            if command == "quit":
                break
            if command == "help":
                print_help()
                continue
            if not line:
                continue

            if command == "state":
                pass
            elif command == "roll":
                outcome = service.roll_enemy_initiative(session_id)
                for warning in outcome.warnings:
                    console.print(f"[yellow]{warning}[/yellow]")
            elif command == "next":
                service.apply_update(session_id, advance_turn=True)
            elif command == "end":
                console.print(f"[dim]{service.end_combat(session_id).message}[/dim]")
            else:
                console.print("[dim]Narrating...[/dim]")
                result = await narrate_action(session_id, line, service=service)
                console.print(f"\n{result.narrative}\n")
                if result.suggestion_error:
                    console.print(f"[yellow]Suggestion rejected: {result.suggestion_error}[/yellow]")
                for warning in result.warnings:
                    console.print(f"[yellow]{warning}[/yellow]")

            console.print(render_combat(service.get_state(session_id).state))

        except KeyboardInterrupt:
            break
        except TableDMError as e:
            console.print(f"[red]{e.message}[/red]")


async def async_main(argv: list[str]):
    print_banner()

    if len(argv) != 1:
        console.print("[red]Usage: python -m tabledm.main <session-id-or-code>[/red]")
        sys.exit(2)

    for issue in Config.validate():
        console.print(f"[yellow]• {issue}[/yellow]")
    print_provider_info()

    console.print("[dim]Initializing database...[/dim]")
    init_db()

    try:
        session_id = _resolve_session_id(argv[0])
    except NotFound as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    await console_loop(session_id)
    console.print("\n[cyan]Goodbye.[/cyan]")


def main():
    """Entry point for the CLI."""
    asyncio.run(async_main(sys.argv[1:]))


if __name__ == "__main__":
    main()
