"""Tests for pixelflow.plugins.resolver: plugin resolution and the install flow.

Plugins are simulated by writing small modules into temporary directories.
Each test uses freshly generated module names so that nothing leaks between
tests through ``sys.modules`` or the import caches.  No real package manager
is ever run: the command runner is always a mock.
"""

import subprocess
import sys
import textwrap
import threading
import time
import uuid
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from pixelflow.core.errors import InstallFailedError, PluginLoadError, PluginNotFoundError
from pixelflow.plugins.catalog import PluginEntry
from pixelflow.plugins.resolver import PluginResolver

QR_PLUGIN_SOURCE = textwrap.dedent(
    """
    from pixelflow.core.models import Blob, CapabilityDescriptor
    from pixelflow.plugins.base import GeneratorBase


    class QR(GeneratorBase):
        descriptor = CapabilityDescriptor(name="qr", kind="generate")

        def invoke(self, input, params):
            return Blob(data=b"qr", mime="image/png")


    CAPABILITIES = [QR()]
    """
)


class PluginSandbox:
    """Temporary plugin locations plus a catalogue of uniquely named modules."""

    def __init__(self, root: Path, monkeypatch) -> None:
        self.local_site = root / "local-site"
        self.global_site = root / "global-site"
        self.local_site.mkdir()
        self.global_site.mkdir()
        self.staging = root / "staging"
        self.staging.mkdir()
        monkeypatch.syspath_prepend(str(self.local_site))
        self.modules: list[str] = []

    def entry(self, key: str = "qr") -> PluginEntry:
        module = f"pixelflow_test_{key}_{uuid.uuid4().hex[:8]}"
        self.modules.append(module)
        return PluginEntry(
            key=key,
            package=f"pixelflow-{key}",
            module=module,
            display_name=f"{key} plugin",
            capability=key,
        )

    def write(self, entry: PluginEntry, source: str = QR_PLUGIN_SOURCE, *, where: Path = None) -> Path:
        # Built aside and renamed into place: concurrent imports never see a
        # half-written package.
        staging = self.staging / entry.module
        staging.mkdir()
        (staging / "__init__.py").write_text(source)
        package_dir = (where or self.local_site) / entry.module
        staging.rename(package_dir)
        return package_dir

    def dependency(self, *, where: Path) -> str:
        """Write a uniquely named top-level module a plugin can import."""
        name = f"pixelflow_test_dep_{uuid.uuid4().hex[:8]}"
        self.modules.append(name)
        staging = self.staging / f"{name}.py"
        staging.write_text("ENCODER = 'ok'\n")
        staging.rename(where / f"{name}.py")
        return name

    def cleanup(self) -> None:
        for module in self.modules:
            sys.modules.pop(module, None)


@pytest.fixture
def sandbox(tmp_path, monkeypatch):
    box = PluginSandbox(tmp_path, monkeypatch)
    yield box
    box.cleanup()


@pytest.fixture
def launch():
    """Launch context double for a local pip install."""
    context = MagicMock(name="launch")
    context.ephemeral = False
    context.install_command.side_effect = lambda package: ["pip", "install", package]
    context.manual_command.side_effect = lambda package: f"pip install {package}"
    context.global_site_roots.return_value = []
    return context


def make_resolver(registry, test_config, entry, launch, **kwargs):
    kwargs.setdefault("interactive", True)
    kwargs.setdefault("confirm", MagicMock(return_value=True))
    kwargs.setdefault("runner", MagicMock(name="runner"))
    kwargs.setdefault("echo", MagicMock(name="echo"))
    return PluginResolver(
        registry,
        test_config,
        catalog={entry.key: entry},
        launch=launch,
        **kwargs,
    )


class TestFind:
    """Resolution order: local import first, global roots only when ephemeral."""

    def test_local_hit_never_searches_global_roots(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry)
        launch.ephemeral = True
        resolver = make_resolver(registry, test_config, entry, launch)

        module = resolver.find("qr")

        assert module.__name__ == entry.module
        assert launch.global_site_roots.call_count == 0

    def test_missing_returns_none(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        resolver = make_resolver(registry, test_config, entry, launch)

        assert resolver.find("qr") is None

    def test_local_context_does_not_search_global_roots(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry, where=sandbox.global_site)
        launch.global_site_roots.return_value = [sandbox.global_site]
        resolver = make_resolver(registry, test_config, entry, launch)

        assert resolver.find("qr") is None
        launch.global_site_roots.assert_not_called()

    def test_ephemeral_loads_from_global_root(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry, where=sandbox.global_site)
        launch.ephemeral = True
        launch.global_site_roots.return_value = [sandbox.global_site / "missing", sandbox.global_site]
        resolver = make_resolver(registry, test_config, entry, launch)

        module = resolver.find("qr")

        assert module is not None
        assert module.__name__ == entry.module
        assert sys.modules[entry.module] is module
        assert len(module.CAPABILITIES) == 1

    def test_import_failure_is_a_load_error(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry, "raise RuntimeError('broken plugin')\n")
        resolver = make_resolver(registry, test_config, entry, launch)

        with pytest.raises(PluginLoadError) as exc_info:
            resolver.find("qr")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.package == "pixelflow-qr"

    def test_global_import_failure_is_a_load_error(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry, "raise ImportError('missing dependency')\n", where=sandbox.global_site)
        launch.ephemeral = True
        launch.global_site_roots.return_value = [sandbox.global_site]
        resolver = make_resolver(registry, test_config, entry, launch)

        with pytest.raises(PluginLoadError):
            resolver.find("qr")
        assert entry.module not in sys.modules
        assert str(sandbox.global_site) not in sys.path

    def test_global_plugin_imports_its_dependencies(self, registry, test_config, sandbox, launch):
        """Dependencies installed beside a global plugin are importable from it."""
        entry = sandbox.entry()
        dependency = sandbox.dependency(where=sandbox.global_site)
        source = f"import {dependency}\nENCODER = {dependency}.ENCODER\n" + QR_PLUGIN_SOURCE
        sandbox.write(entry, source, where=sandbox.global_site)
        launch.ephemeral = True
        launch.global_site_roots.return_value = [sandbox.global_site]
        resolver = make_resolver(registry, test_config, entry, launch)

        module = resolver.find("qr")

        assert module.ENCODER == "ok"
        assert dependency in sys.modules

    def test_unknown_key(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        runner = MagicMock()
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        with pytest.raises(PluginNotFoundError, match="Unknown plugin"):
            resolver.resolve("nonexistent")
        runner.assert_not_called()


class TestInstallFlow:
    def test_non_interactive_never_prompts(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        confirm = MagicMock(return_value=True)
        runner = MagicMock()
        resolver = make_resolver(
            registry, test_config, entry, launch, interactive=False, confirm=confirm, runner=runner
        )

        with pytest.raises(PluginNotFoundError) as exc_info:
            resolver.resolve("qr")

        confirm.assert_not_called()
        runner.assert_not_called()
        assert exc_info.value.manual_command == "pip install pixelflow-qr"
        assert exc_info.value.declined is False

    def test_auto_install_disabled(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        confirm = MagicMock(return_value=True)
        resolver = make_resolver(registry, test_config, entry, launch, confirm=confirm)

        with pytest.raises(PluginNotFoundError):
            resolver.resolve("qr", auto_install=False)
        confirm.assert_not_called()

    def test_declined(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        runner = MagicMock()
        resolver = make_resolver(
            registry, test_config, entry, launch, confirm=MagicMock(return_value=False), runner=runner
        )

        with pytest.raises(PluginNotFoundError) as exc_info:
            resolver.resolve("qr")

        assert exc_info.value.declined is True
        runner.assert_not_called()

    def test_install_then_resolve(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        runner = MagicMock(side_effect=lambda *args, **kwargs: sandbox.write(entry))
        echo = MagicMock()
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner, echo=echo)

        module = resolver.resolve("qr")

        assert module.__name__ == entry.module
        runner.assert_called_once()
        assert runner.call_args.args[0] == ["pip", "install", "pixelflow-qr"]
        assert runner.call_args.kwargs["check"] is True
        assert runner.call_args.kwargs["timeout"] == test_config.install_timeout
        echo.assert_any_call("Installed pixelflow-qr")

    def test_install_command_fails(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        error = subprocess.CalledProcessError(1, ["pip", "install", "pixelflow-qr"])
        runner = MagicMock(side_effect=error)
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        with pytest.raises(InstallFailedError) as exc_info:
            resolver.resolve("qr")

        assert exc_info.value.cause is error
        assert exc_info.value.manual_command == "pip install pixelflow-qr"

    def test_retry_once_then_fail(self, registry, test_config, sandbox, launch):
        """An install that leaves the plugin unresolvable is reported, not retried."""
        entry = sandbox.entry()
        runner = MagicMock()
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        with pytest.raises(InstallFailedError) as exc_info:
            resolver.resolve("qr")

        assert runner.call_count == 1
        assert isinstance(exc_info.value.cause, PluginNotFoundError)

    def test_installed_but_broken(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        runner = MagicMock(
            side_effect=lambda *args, **kwargs: sandbox.write(entry, "raise ValueError('bad')\n")
        )
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        with pytest.raises(InstallFailedError) as exc_info:
            resolver.resolve("qr")

        assert isinstance(exc_info.value.cause, ValueError)

    def test_concurrent_installs_run_once(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()

        def slow_install(*args, **kwargs):
            time.sleep(0.1)
            sandbox.write(entry)

        runner = MagicMock(side_effect=slow_install)
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        results = []
        errors = []

        def worker():
            try:
                results.append(resolver.resolve("qr"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 4
        assert runner.call_count == 1
        assert all(module is results[0] for module in results)

    def test_installs_across_resolvers_run_once(self, registry, test_config, sandbox, launch):
        """Two resolvers in one process share the install lock for a distribution."""
        entry = sandbox.entry()

        def slow_install(*args, **kwargs):
            time.sleep(0.1)
            sandbox.write(entry)

        runner = MagicMock(side_effect=slow_install)
        resolvers = [
            make_resolver(registry, test_config, entry, launch, runner=runner) for _ in range(2)
        ]
        results = []
        errors = []

        def worker(resolver):
            try:
                results.append(resolver.resolve("qr"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(r,)) for r in resolvers * 2]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 4
        assert runner.call_count == 1


class TestEphemeralInstall:
    """Ephemeral launch: not found, confirm, global install, then resolve from the global root."""

    def test_install_resolves_from_global_root(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        launch.ephemeral = True
        launch.global_site_roots.return_value = [sandbox.global_site]

        def install_globally(*args, **kwargs):
            dependency = sandbox.dependency(where=sandbox.global_site)
            source = f"import {dependency}\n" + QR_PLUGIN_SOURCE
            sandbox.write(entry, source, where=sandbox.global_site)

        runner = MagicMock(side_effect=install_globally)
        confirm = MagicMock(return_value=True)
        resolver = make_resolver(
            registry, test_config, entry, launch, runner=runner, confirm=confirm
        )

        module = resolver.resolve("qr")

        assert module.__name__ == entry.module
        assert sys.modules[entry.module] is module
        confirm.assert_called_once()
        runner.assert_called_once()
        launch.install_command.assert_called_with("pixelflow-qr")

    def test_load_registers_global_plugin(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        launch.ephemeral = True
        launch.global_site_roots.return_value = [sandbox.global_site]
        runner = MagicMock(
            side_effect=lambda *args, **kwargs: sandbox.write(entry, where=sandbox.global_site)
        )
        resolver = make_resolver(registry, test_config, entry, launch, runner=runner)

        registered = resolver.load("qr")

        assert [c.descriptor.name for c in registered] == ["qr"]
        assert ("qr", "generate") in registry


class TestLoad:
    def test_registers_capabilities(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry)
        resolver = make_resolver(registry, test_config, entry, launch)

        registered = resolver.load("qr")

        assert [c.descriptor.name for c in registered] == ["qr"]
        assert ("qr", "generate") in registry

    def test_second_load_registers_nothing(self, registry, test_config, sandbox, launch):
        entry = sandbox.entry()
        sandbox.write(entry)
        resolver = make_resolver(registry, test_config, entry, launch)

        resolver.load("qr")

        assert resolver.load("qr") == []
        assert len(registry) == 1


class TestStatus:
    def test_reports_each_entry(self, registry, test_config, sandbox, launch):
        present = sandbox.entry("qr")
        absent = sandbox.entry("mermaid")
        broken = sandbox.entry("plotly")
        sandbox.write(present)
        sandbox.write(broken, "raise RuntimeError('broken')\n")

        resolver = PluginResolver(
            registry,
            test_config,
            catalog={e.key: e for e in (present, absent, broken)},
            launch=launch,
            interactive=False,
        )

        assert resolver.status() == {"qr": True, "mermaid": False, "plotly": False}
