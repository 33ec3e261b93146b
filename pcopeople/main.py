"""Main entry point for the pcopeople CLI.

Sets up the Typer application, wires dependencies lazily (Composition Root)
and maps CLI commands onto the client's matcher and batch executor.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Coroutine, Dict, List, Optional

import typer

from pcopeople.client import PcoClient
from pcopeople.core.exceptions import PcoClientError
from pcopeople.domain.models.batch import BatchOptions, BatchSummary
from pcopeople.domain.models.common import AgePreference, MatchStrategy
from pcopeople.domain.models.matching import PersonMatchCriteria
from pcopeople.infrastructure.cli.display import ConsoleDisplay
from pcopeople.infrastructure.config.settings import build_client_config, get_config, load_configuration
from pcopeople.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

_dependencies: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Raises:
        ConfigurationError: If no API credentials are configured.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_file=get_config('logging.file'),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
    )
    logger.info("Initializing application dependencies...")

    dependencies: Dict[str, Any] = {'ui': ConsoleDisplay()}
    dependencies['config'] = build_client_config()
    dependencies['client'] = PcoClient(dependencies['config'])
    logger.info("All dependencies initialized successfully.")
    return dependencies


def get_dependencies() -> Dict[str, Any]:
    """Returns the wired dependencies, creating them on first use."""
    if not _dependencies:
        try:
            _dependencies.update(create_dependencies())
        except PcoClientError as e:
            logger.error(f"Application initialization failed: {e}")
            ConsoleDisplay().display_error(f"Application Initialization Failed: {e}")
            raise typer.Exit(code=1)
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="pcopeople",
    help="pcopeople: Planning Center People client with person matching and batch operations.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs an async command body, reporting failures through the UI.

    Raises:
        typer.Exit: With code 1 when the command fails.
    """
    ui: ConsoleDisplay = _dependencies['ui']
    try:
        return asyncio.run(coro)
    except PcoClientError as e:
        logger.error(f"Command failed: {e}")
        ui.display_error(str(e))
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        ui.display_error(f"Command execution failed: {e}")
    raise typer.Exit(code=1)


# --- Shared Options ---

FirstNameOption = Annotated[Optional[str], typer.Option("--first-name", "-f", help="First name to match.")]
LastNameOption = Annotated[Optional[str], typer.Option("--last-name", "-l", help="Last name to match.")]
EmailOption = Annotated[Optional[str], typer.Option("--email", "-e", help="Email address to match.")]
PhoneOption = Annotated[Optional[str], typer.Option("--phone", "-p", help="Phone number to match.")]
BirthYearOption = Annotated[Optional[int], typer.Option("--birth-year", help="Expected birth year.")]
MinAgeOption = Annotated[Optional[int], typer.Option("--min-age", help="Minimum age in years.")]
MaxAgeOption = Annotated[Optional[int], typer.Option("--max-age", help="Maximum age in years.")]
AgePreferenceOption = Annotated[
    Optional[AgePreference],
    typer.Option("--age-preference", case_sensitive=False, help="Restrict matches to adults or children."),
]
StrategyOption = Annotated[
    MatchStrategy,
    typer.Option("--strategy", "-s", case_sensitive=False, help="How strict automatic matching is."),
]


def build_criteria(
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    phone: Optional[str],
    birth_year: Optional[int],
    min_age: Optional[int],
    max_age: Optional[int],
    age_preference: Optional[AgePreference],
    strategy: MatchStrategy,
    create_if_not_found: bool = True,
) -> PersonMatchCriteria:
    """Builds match criteria from CLI options.

    Raises:
        typer.BadParameter: If no name, email or phone is given.
    """
    if not (first_name or last_name or email or phone):
        raise typer.BadParameter("Provide at least one of --first-name, --last-name, --email or --phone.")
    return PersonMatchCriteria(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        birth_year=birth_year,
        min_age=min_age,
        max_age=max_age,
        age_preference=age_preference,
        match_strategy=strategy,
        create_if_not_found=create_if_not_found,
    )


def load_batch_file(path: Path) -> List[Dict[str, Any]]:
    """Reads a JSON list of batch operations.

    Raises:
        typer.BadParameter: If the file is not a JSON list of objects.
    """
    try:
        operations = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        raise typer.BadParameter(f"Cannot read batch file {path}: {e}")
    if not isinstance(operations, list) or not all(isinstance(op, dict) for op in operations):
        raise typer.BadParameter(f"Batch file {path} must contain a JSON list of operation objects.")
    return operations


# --- Async command bodies ---

async def _match(client: PcoClient, ui: ConsoleDisplay, criteria: PersonMatchCriteria, show_all: bool) -> None:
    try:
        if show_all:
            ui.display_matches(await client.matcher.get_all_matches(criteria))
            return
        best = await client.matcher.find_match(criteria)
        if best is None:
            ui.display_info(f"No match found with strategy '{criteria.match_strategy.value}'.")
        else:
            ui.display_matches([best], title="Best Match")
    finally:
        await client.aclose()


async def _find_or_create(client: PcoClient, ui: ConsoleDisplay, criteria: PersonMatchCriteria) -> None:
    try:
        person = await client.people.find_or_create(criteria)
        ui.display_person(person)
    finally:
        await client.aclose()


async def _run_batch(
    client: PcoClient,
    ui: ConsoleDisplay,
    operations: List[Dict[str, Any]],
    options: BatchOptions,
    show_metrics: bool,
) -> BatchSummary:
    try:
        summary = await client.batch.execute(operations, options)
        ui.display_batch_summary(summary)
        return summary
    finally:
        if show_metrics:
            ui.display_metrics(client.get_performance_metrics())
        await client.aclose()


# --- CLI Commands ---

@app.command()
def match(
    first_name: FirstNameOption = None,
    last_name: LastNameOption = None,
    email: EmailOption = None,
    phone: PhoneOption = None,
    birth_year: BirthYearOption = None,
    min_age: MinAgeOption = None,
    max_age: MaxAgeOption = None,
    age_preference: AgePreferenceOption = None,
    strategy: StrategyOption = MatchStrategy.FUZZY,
    show_all: Annotated[bool, typer.Option("--all", "-a", help="Show every ranked candidate.")] = False,
):
    """Find the person best matching the given details."""
    criteria = build_criteria(
        first_name, last_name, email, phone, birth_year, min_age, max_age, age_preference, strategy
    )
    deps = get_dependencies()
    run_async(_match(deps['client'], deps['ui'], criteria, show_all))


@app.command(name="find-or-create")
def find_or_create(
    first_name: FirstNameOption = None,
    last_name: LastNameOption = None,
    email: EmailOption = None,
    phone: PhoneOption = None,
    birth_year: BirthYearOption = None,
    min_age: MinAgeOption = None,
    max_age: MaxAgeOption = None,
    age_preference: AgePreferenceOption = None,
    strategy: StrategyOption = MatchStrategy.FUZZY,
    no_create: Annotated[bool, typer.Option("--no-create", help="Fail instead of creating a new person.")] = False,
):
    """Find the best matching person, creating one when nothing matches."""
    criteria = build_criteria(
        first_name, last_name, email, phone, birth_year, min_age, max_age, age_preference, strategy,
        create_if_not_found=not no_create,
    )
    deps = get_dependencies()
    run_async(_find_or_create(deps['client'], deps['ui'], criteria))


@app.command()
def batch(
    file: Annotated[Path, typer.Argument(
        exists=True, file_okay=True, dir_okay=False, readable=True, resolve_path=True,
        help="JSON file containing a list of operations.",
    )],
    max_concurrency: Annotated[int, typer.Option("--max-concurrency", "-c", min=1, help="Operations in flight at once.")] = 5,
    stop_on_error: Annotated[bool, typer.Option("--stop-on-error", help="Abort on the first failed operation.")] = False,
    rollback: Annotated[bool, typer.Option("--rollback", help="Delete created records when the batch aborts.")] = False,
    show_metrics: Annotated[bool, typer.Option("--show-metrics", help="Print request latency metrics.")] = False,
):
    """Run a batch of people, email and phone number operations."""
    operations = load_batch_file(file)
    options = BatchOptions(
        continue_on_error=not stop_on_error,
        max_concurrency=max_concurrency,
        enable_rollback=rollback,
    )
    deps = get_dependencies()
    summary = run_async(_run_batch(deps['client'], deps['ui'], operations, options, show_metrics))
    if summary.failed:
        raise typer.Exit(code=1)


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.debug("Starting pcopeople CLI...")
    app()


if __name__ == "__main__":
    cli_entry_point()
