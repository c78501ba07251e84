# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from capture import registry


class FakeController:
    def __init__(self) -> None:
        self.stops = 0

    async def stop_and_wait(self) -> None:
        self.stops += 1


@pytest.fixture(autouse=True)
def fixture_clean_registry(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(registry, "_controller", None)


def test_get_without_install_raises():
    with pytest.raises(RuntimeError):
        registry.get_controller()


def test_second_controller_is_refused():
    first = FakeController()
    registry.install_controller(first)  # type: ignore[arg-type]

    # Re-installing the same instance is harmless
    registry.install_controller(first)  # type: ignore[arg-type]
    with pytest.raises(RuntimeError):
        registry.install_controller(FakeController())  # type: ignore[arg-type]

    assert registry.get_controller() is first


def test_dispose_stops_session_and_is_idempotent():
    controller = FakeController()
    registry.install_controller(controller)  # type: ignore[arg-type]

    async def scenario() -> None:
        await registry.dispose_controller()
        await registry.dispose_controller()

    asyncio.run(scenario())

    assert controller.stops == 1
    with pytest.raises(RuntimeError):
        registry.get_controller()
