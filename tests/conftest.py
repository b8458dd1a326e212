"""Shared pytest fixtures for pixelflow tests."""

import shutil
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest
from PIL import Image

from pixelflow.core.config import PixelflowConfig
from pixelflow.core.models import (
    Blob,
    CapabilityDescriptor,
    CapabilityKind,
    ParameterSpec,
    SaveResult,
    TextResult,
)
from pixelflow.core.registry import CapabilityRegistry
from pixelflow.plugins.launch import LaunchContext


class FakeCapability:
    """Capability double that records every invocation.

    Args:
        name: Capability name.
        kind: Capability kind.
        parameters: Parameter schema.
        result: Value returned from invoke (a sensible envelope by default).
        side_effect: Exception raised from invoke instead of returning.
    """

    def __init__(
        self,
        name: str,
        kind: CapabilityKind | str,
        parameters: dict[str, ParameterSpec] | None = None,
        result: Any = None,
        side_effect: BaseException | None = None,
        protocols: list[str] | None = None,
    ) -> None:
        self.descriptor = CapabilityDescriptor(
            name=name,
            kind=kind,
            parameters=parameters or {},
            protocols=protocols or [],
        )
        self.result = result if result is not None else self._default_result()
        self.side_effect = side_effect
        self.calls: list[tuple[Any, dict[str, Any]]] = []

    def _default_result(self):
        kind = self.descriptor.kind
        if kind in (CapabilityKind.GENERATE, CapabilityKind.TRANSFORM):
            return Blob(data=f"{self.descriptor.name}-bytes".encode(), mime="image/png")
        if kind in (CapabilityKind.VISION, CapabilityKind.TEXT):
            return TextResult(content=f"{self.descriptor.name} output")
        return SaveResult(destination="memory://", bytes_written=0, provider=self.descriptor.name)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def invoke(self, input, params):
        self.calls.append((input, params))
        if self.side_effect is not None:
            raise self.side_effect
        return self.result


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config() -> PixelflowConfig:
    """Configuration isolated from the environment and any .env file."""
    return PixelflowConfig(_env_file=None, auto_install=True, strict_parameters=False)


@pytest.fixture
def registry(test_config: PixelflowConfig) -> CapabilityRegistry:
    """An empty, isolated registry."""
    return CapabilityRegistry(test_config)


@pytest.fixture
def make_capability():
    """Factory for FakeCapability instances."""
    return FakeCapability


@pytest.fixture
def png_bytes() -> bytes:
    """A small real PNG image (40x20, red)."""
    buffer = BytesIO()
    Image.new("RGB", (40, 20), color=(255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_blob(png_bytes: bytes) -> Blob:
    """A Blob wrapping a real PNG image."""
    return Blob(data=png_bytes, mime="image/png", width=40, height=20)


@pytest.fixture
def local_launch() -> LaunchContext:
    """A non-ephemeral pip launch context."""
    return LaunchContext(ephemeral=False, package_manager="pip", python="/venv/bin/python")


@pytest.fixture
def mock_runner() -> MagicMock:
    """A subprocess.run stand-in that always succeeds."""
    runner = MagicMock(name="runner")
    runner.return_value = MagicMock(returncode=0, stdout="/opt/global\n", stderr="")
    return runner
