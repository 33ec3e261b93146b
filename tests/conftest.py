import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from typer.testing import CliRunner

from pcopeople import main as cli_main
from pcopeople.domain.interfaces.people_directory import PeopleDirectory
from pcopeople.domain.models.resources import Resource, ResourceList
from pcopeople.infrastructure.cli.display import ConsoleDisplay
from pcopeople.infrastructure.config.settings import (
    DEFAULT_BASE_URL as BASE_URL,
    PcoClientConfig,
    PersonalAccessTokenAuth,
    RetrySettings,
    clear_test_config,
    set_config_for_testing,
)
from pcopeople.infrastructure.monitoring.event_emitter import EventEmitter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def patch_sleep(mocker, fake_clock: FakeClock):
    """Replaces asyncio.sleep so that sleeping advances the fake clock instantly."""
    slept: List[float] = []

    async def fake_sleep(seconds: float, *args: Any, **kwargs: Any) -> None:
        slept.append(seconds)
        fake_clock.advance(seconds)

    mocker.patch("asyncio.sleep", side_effect=fake_sleep)
    return slept


@pytest.fixture
def make_person() -> Callable[..., Resource]:
    """Factory for Person resources."""
    def factory(person_id: str, first_name: Optional[str] = None, last_name: Optional[str] = None, **attributes: Any) -> Resource:
        attrs: Dict[str, Any] = {"first_name": first_name, "last_name": last_name}
        attrs.update(attributes)
        return Resource(type="Person", id=person_id, attributes=attrs)
    return factory


@pytest.fixture
def people_directory(mocker):
    """A mocked PeopleDirectory; its async methods are AsyncMocks."""
    directory = mocker.MagicMock(spec=PeopleDirectory)
    directory.search.return_value = ResourceList()
    return directory


@pytest.fixture
def client_config() -> PcoClientConfig:
    return PcoClientConfig(
        auth=PersonalAccessTokenAuth(app_id="app-id", secret="app-secret"),
        retry=RetrySettings(enabled=False),
    )


@pytest.fixture
def event_emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def json_response() -> Callable[..., httpx.Response]:
    """Builds httpx responses carrying a JSON body."""
    def factory(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        content = b"" if body is None else json.dumps(body).encode()
        all_headers = {"Content-Type": "application/json"}
        all_headers.update(headers or {})
        return httpx.Response(status, content=content, headers=all_headers)
    return factory


@pytest.fixture
def mock_console_display(mocker):
    """Patches the CLI's ConsoleDisplay; returns the shared mock instance."""
    display = mocker.MagicMock(spec=ConsoleDisplay)
    mocker.patch("pcopeople.main.ConsoleDisplay", return_value=display)
    return display


@pytest.fixture
def cli_credentials():
    """Configures personal access token credentials for CLI runs."""
    set_config_for_testing({
        "PCO_APP_ID": "app-id",
        "PCO_APP_SECRET": "app-secret",
        "PCO_ACCESS_TOKEN": None,
        "PCO_BASE_URL": BASE_URL,
        "logging.level": "WARNING",
        "logging.file": None,
    })


@pytest.fixture(autouse=True)
def reset_global_state():
    """Clears config overrides, the CLI's cached dependencies and root logging changes between tests."""
    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    yield
    clear_test_config()
    cli_main._dependencies.clear()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
