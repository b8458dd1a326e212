"""Locate, and on request install, optional pixelflow plugins.

Resolution Order
----------------
1. Import the plugin module from the normal ``sys.path``.  This covers any
   plugin installed into the environment pixelflow runs in.
2. When running from an ephemeral launcher (``pipx run``, ``uvx``), search the
   package manager's global roots as well.  Nothing is searched otherwise.
3. Report "not found" (``find()`` returns None).  A module that was found
   but raised while importing is a different outcome: PluginLoadError.

Install Flow
------------
Entered only when the plugin was not found and auto-install is allowed:

- No interactive input channel: PluginNotFoundError with the manual
  install command.  Never blocks.
- The confirmation callback declines: PluginNotFoundError (``declined``).
- Confirmed: run the install command for the detected package manager and
  scope, then retry resolution exactly once.  Failure at that point raises
  InstallFailedError carrying the cause and the manual command.

Installs of one distribution are serialised across every resolver in the
process; different distributions install independently.

Usage Example
-------------
    >>> from pixelflow.core.registry import CapabilityRegistry
    >>> from pixelflow.plugins.resolver import PluginResolver
    >>>
    >>> registry = CapabilityRegistry()
    >>> resolver = PluginResolver(registry)
    >>> resolver.load("qr")           # may prompt to install pixelflow-qr
    >>> registry.lookup("qr", "generate")
"""

import importlib
import importlib.machinery
import importlib.util
import logging
import site
import subprocess
import sys
import threading
from types import ModuleType
from typing import TYPE_CHECKING, Any, Callable, Mapping

from pixelflow.core.config import PixelflowConfig, config as default_config
from pixelflow.core.errors import InstallFailedError, PluginLoadError, PluginNotFoundError

from .catalog import PLUGIN_CATALOG, PluginEntry
from .launch import CommandRunner, LaunchContext

if TYPE_CHECKING:
    from pixelflow.plugins.base import Capability
    from pixelflow.core.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

# Install locks per distribution, shared by every resolver in the process.
_INSTALL_LOCKS: dict[str, threading.Lock] = {}
_INSTALL_LOCKS_GUARD = threading.Lock()


def prompt_confirm(message: str) -> bool:
    """Ask a yes/no question on the terminal."""
    try:
        answer = input(f"{message} (y/n): ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def stdin_is_interactive() -> bool:
    return bool(sys.stdin) and sys.stdin.isatty()


class PluginResolver:
    """Find plugin modules across installation contexts and install missing ones.

    Args:
        registry: Registry that :meth:`load` registers plugin capabilities into.
        config: Configuration (defaults to the global instance).
        catalog: Known plugins by key (defaults to PLUGIN_CATALOG).
        launch: Launch context (detected when omitted).
        confirm: Callback asked before installing; returns True to proceed.
        interactive: Whether ``confirm`` may be called at all.  Defaults to
            whether stdin is a terminal.
        runner: Runs install and prefix-query commands (``subprocess.run``).
        echo: Receives human-readable progress lines.
    """

    def __init__(
        self,
        registry: "CapabilityRegistry",
        config: PixelflowConfig | None = None,
        *,
        catalog: Mapping[str, PluginEntry] | None = None,
        launch: LaunchContext | None = None,
        confirm: Callable[[str], bool] = prompt_confirm,
        interactive: bool | None = None,
        runner: CommandRunner = subprocess.run,
        echo: Callable[[str], Any] = print,
    ) -> None:
        self.registry = registry
        self.config = config or default_config
        self.catalog = dict(PLUGIN_CATALOG if catalog is None else catalog)
        self.launch = launch or LaunchContext.detect(self.config)
        self.confirm = confirm
        self.interactive = stdin_is_interactive() if interactive is None else interactive
        self.runner = runner
        self.echo = echo

    # -- Public interface ---------------------------------------------------

    def entry(self, key: str) -> PluginEntry:
        """Return the catalogue entry for ``key``.

        Raises:
            PluginNotFoundError: If the key is not in the catalogue.
        """
        try:
            return self.catalog[key]
        except KeyError:
            known = ", ".join(sorted(self.catalog)) or "none"
            raise PluginNotFoundError(
                f"Unknown plugin '{key}'. Known plugins: {known}", plugin=key
            ) from None

    def find(self, key: str) -> ModuleType | None:
        """Import the plugin module without installing anything.

        Returns:
            The module, or None when it is not importable from any context.

        Raises:
            PluginNotFoundError: If the key is not in the catalogue.
            PluginLoadError: If the module was found but importing it failed.
        """
        entry = self.entry(key)

        module = self._import_local(entry)
        if module is not None:
            return module

        if self.launch.ephemeral:
            return self._import_global(entry)
        return None

    def resolve(self, key: str, auto_install: bool | None = None) -> ModuleType:
        """Return the plugin module, offering to install it if missing.

        Args:
            key: Plugin key from the catalogue.
            auto_install: Allow the install flow (defaults to config.auto_install).

        Raises:
            PluginNotFoundError: Not installed and not (or not allowed to be)
                installed.
            PluginLoadError: Found but failed to import.
            InstallFailedError: Installed, but still not resolvable.
        """
        entry = self.entry(key)
        module = self.find(key)
        if module is not None:
            return module

        auto_install = self.config.auto_install if auto_install is None else auto_install
        return self._offer_install(entry, auto_install)

    def load(self, key: str, auto_install: bool | None = None) -> list["Capability"]:
        """Resolve a plugin and register its capabilities.

        Returns:
            Capabilities newly registered by this call.
        """
        module = self.resolve(key, auto_install=auto_install)
        return self.registry.register_module(module)

    def status(self) -> dict[str, bool]:
        """Report which catalogue plugins are importable right now."""
        installed: dict[str, bool] = {}
        for key in self.catalog:
            try:
                installed[key] = self.find(key) is not None
            except PluginLoadError as e:
                logger.warning(f"Plugin '{key}' is installed but fails to import: {e}")
                installed[key] = False
        return installed

    # -- Resolution ---------------------------------------------------------

    def _import_local(self, entry: PluginEntry) -> ModuleType | None:
        try:
            spec = importlib.util.find_spec(entry.module)
        except (ImportError, ValueError):
            spec = None
        if spec is None:
            logger.debug(f"Plugin module {entry.module} not on sys.path")
            return None

        try:
            return importlib.import_module(entry.module)
        except Exception as e:
            raise PluginLoadError(
                f"Plugin '{entry.key}' ({entry.package}) was found but failed to import: {e}",
                plugin=entry.key,
                package=entry.package,
                cause=e,
            ) from e

    def _import_global(self, entry: PluginEntry) -> ModuleType | None:
        roots = self.launch.global_site_roots(
            self.runner, fallback=self.config.global_prefix_fallback
        )
        search_paths = [str(root) for root in roots]
        for root in search_paths:
            spec = importlib.machinery.PathFinder.find_spec(entry.module, [root])
            if spec and spec.loader:
                break
        else:
            logger.debug(f"Plugin module {entry.module} not found in global roots {search_paths}")
            return None

        # The plugin's own dependencies live in the same root.
        before = set(sys.path)
        site.addsitedir(root)
        added = [path for path in sys.path if path not in before]

        module = importlib.util.module_from_spec(spec)
        sys.modules[entry.module] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(entry.module, None)
            for path in added:
                sys.path.remove(path)
            raise PluginLoadError(
                f"Plugin '{entry.key}' ({entry.package}) was found at {spec.origin} "
                f"but failed to import: {e}",
                plugin=entry.key,
                package=entry.package,
                cause=e,
            ) from e

        logger.info(f"Loaded plugin {entry.module} from global install at {spec.origin}")
        return module

    # -- Installation -------------------------------------------------------

    def _install_lock(self, entry: PluginEntry) -> threading.Lock:
        with _INSTALL_LOCKS_GUARD:
            return _INSTALL_LOCKS.setdefault(entry.package, threading.Lock())

    def _not_found(self, entry: PluginEntry, manual: str, *, declined: bool = False):
        return PluginNotFoundError(
            f"Plugin '{entry.key}' requires {entry.package}. Install it with: {manual}",
            plugin=entry.key,
            package=entry.package,
            manual_command=manual,
            declined=declined,
        )

    def _offer_install(self, entry: PluginEntry, auto_install: bool) -> ModuleType:
        manual = self.launch.manual_command(entry.package)
        self.echo(f"The '{entry.key}' plugin requires {entry.package} ({entry.display_name})")

        if not auto_install:
            self.echo(f"Install it with: {manual}")
            raise self._not_found(entry, manual)

        if not self.interactive:
            self.echo(f"Install it with: {manual}")
            self.echo("(Auto-install disabled in non-interactive mode)")
            raise self._not_found(entry, manual)

        if not self.confirm(f"Install {entry.package} now?"):
            self.echo(f"You can install it later with: {manual}")
            logger.info(f"Install of {entry.package} declined")
            raise self._not_found(entry, manual, declined=True)

        with self._install_lock(entry):
            # Another thread may have finished the install while we waited.
            module = self.find(entry.key)
            if module is not None:
                return module
            return self._install_and_retry(entry, manual)

    def _install_and_retry(self, entry: PluginEntry, manual: str) -> ModuleType:
        command = self.launch.install_command(entry.package)
        scope = " (globally)" if self.launch.ephemeral else ""
        self.echo(f"Installing {entry.package}{scope}...")
        logger.info(f"Running install command: {manual}")

        try:
            self.runner(command, check=True, timeout=self.config.install_timeout)
        except (OSError, subprocess.SubprocessError) as e:
            self.echo(f"Failed to install {entry.package}: {e}")
            self.echo(f"Try installing manually: {manual}")
            raise InstallFailedError(
                f"Installing {entry.package} failed: {e}",
                plugin=entry.key,
                package=entry.package,
                manual_command=manual,
                cause=e,
            ) from e

        importlib.invalidate_caches()
        try:
            module = self.find(entry.key)
        except PluginLoadError as e:
            self.echo(f"Try installing manually: {manual}")
            raise InstallFailedError(
                f"{entry.package} was installed but failed to import: {e.cause}",
                plugin=entry.key,
                package=entry.package,
                manual_command=manual,
                cause=e.cause,
            ) from e

        if module is None:
            self.echo(f"Try installing manually: {manual}")
            raise InstallFailedError(
                f"{entry.package} was installed but {entry.module} is still not importable",
                plugin=entry.key,
                package=entry.package,
                manual_command=manual,
                cause=self._not_found(entry, manual),
            )

        self.echo(f"Installed {entry.package}")
        return module
