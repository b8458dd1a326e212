"""Launch-context detection for plugin resolution and installation.

pixelflow can be started three ways, and each one changes where a plugin can
be imported from and where installing it should put it:

- **Local install**: pixelflow lives in a persistent environment (a venv,
  a Poetry project, the system interpreter).  Plugins are imported from the
  normal ``sys.path`` and installed into the same environment.
- **Ephemeral launcher**: pixelflow runs from a throwaway environment
  created by ``pipx run`` or ``uvx``.  Anything installed into that
  environment disappears with it, so plugins are installed to a global or
  user location and searched there explicitly.

Classification only looks at launch metadata: environment variables, the
interpreter prefix, and ``argv[0]``.  It never walks the filesystem.

Package Managers
----------------
========  ==================================  ====================================
manager   local install                       global install
========  ==================================  ====================================
pip       ``<python> -m pip install P``       ``python3 -m pip install --user P``
uv        ``uv pip install --python <py> P``  ``uv pip install --system P``
poetry    ``poetry add P``                    ``python3 -m pip install --user P``
========  ==================================  ====================================
"""

import logging
import os
import shlex
import site
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from pixelflow.core.config import PixelflowConfig, config as default_config

logger = logging.getLogger(__name__)

# Path fragments of the throwaway environments pipx and uv create.
_EPHEMERAL_MARKERS = ("/pipx/.cache/", "/uv/archive-v", "/uv/builds-v")

# Interpreter outside any launcher venv, queried for the global prefix and
# used for global installs.
GLOBAL_PYTHON = "python3"

# Runs a command the way subprocess.run does and returns a CompletedProcess.
CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def _normalise(path: str) -> str:
    return path.replace("\\", "/")


def looks_ephemeral(prefix: str, argv: Sequence[str]) -> bool:
    """Return True when the interpreter prefix or entry script sits in a launcher cache."""
    candidates = [_normalise(prefix)]
    if argv:
        candidates.append(_normalise(argv[0]))
    return any(marker in candidate for candidate in candidates for marker in _EPHEMERAL_MARKERS)


def detect_package_manager(environ: Mapping[str, str], prefix: str) -> str:
    """Infer the active package manager from launch metadata.

    ``uv run`` and ``uvx`` export ``UV``; ``poetry shell`` / ``poetry run``
    export ``POETRY_ACTIVE``.  Anything else is treated as pip.
    """
    normalised = _normalise(prefix)
    if environ.get("UV") or "/uv/" in normalised:
        return "uv"
    if environ.get("POETRY_ACTIVE"):
        return "poetry"
    return "pip"


@dataclass(frozen=True)
class LaunchContext:
    """How the current process was launched.

    Attributes:
        ephemeral: Running from a throwaway launcher environment.
        package_manager: ``"pip"``, ``"uv"`` or ``"poetry"``.
        python: Interpreter executing pixelflow.
        user_site: User site-packages directory of that interpreter.
    """

    ephemeral: bool
    package_manager: str
    python: str
    user_site: str | None = None

    @classmethod
    def detect(
        cls,
        config: PixelflowConfig | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        argv: Sequence[str] | None = None,
        prefix: str | None = None,
    ) -> "LaunchContext":
        """Classify the current process.

        Config overrides (``PIXELFLOW_EPHEMERAL``, ``PIXELFLOW_PACKAGE_MANAGER``)
        take precedence over detection.
        """
        cfg = config or default_config
        environ = os.environ if environ is None else environ
        argv = sys.argv if argv is None else argv
        prefix = sys.prefix if prefix is None else prefix

        ephemeral = cfg.ephemeral if cfg.ephemeral is not None else looks_ephemeral(prefix, argv)
        if cfg.package_manager != "auto":
            manager = cfg.package_manager
        else:
            manager = detect_package_manager(environ, prefix)

        context = cls(
            ephemeral=ephemeral,
            package_manager=manager,
            python=sys.executable,
            user_site=site.getusersitepackages(),
        )
        logger.debug(f"Launch context: {context}")
        return context

    @property
    def install_scope(self) -> str:
        return "global" if self.ephemeral else "local"

    def install_command(self, package: str) -> list[str]:
        """Build the install command for ``package`` in this context."""
        if self.ephemeral:
            if self.package_manager == "uv":
                return ["uv", "pip", "install", "--system", package]
            # The launcher venv refuses --user installs; target the global interpreter.
            return [GLOBAL_PYTHON, "-m", "pip", "install", "--user", package]

        if self.package_manager == "uv":
            return ["uv", "pip", "install", "--python", self.python, package]
        if self.package_manager == "poetry":
            return ["poetry", "add", package]
        return [self.python, "-m", "pip", "install", package]

    def manual_command(self, package: str) -> str:
        """Install command as a string a user can paste into a shell."""
        return shlex.join(self.install_command(package))

    def global_prefix(
        self,
        runner: CommandRunner = subprocess.run,
        fallback: str = "/usr/local",
        timeout: float = 30.0,
    ) -> str:
        """Ask the package manager for its global install prefix.

        Falls back to ``fallback`` when the query fails.
        """
        if self.package_manager == "uv":
            command = ["uv", "python", "find", "--system"]
        else:
            command = [GLOBAL_PYTHON, "-c", "import sys; print(sys.prefix)"]

        try:
            completed = runner(command, capture_output=True, text=True, check=True, timeout=timeout)
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Could not query global prefix ({e}); using {fallback}")
            return fallback

        output = (completed.stdout or "").strip()
        if not output:
            return fallback
        if self.package_manager == "uv":
            # uv reports the interpreter path, <prefix>/bin/python3
            return str(Path(output).parent.parent)
        return output

    def global_site_roots(self, runner: CommandRunner = subprocess.run, **kwargs: Any) -> list[Path]:
        """Well-known global locations a plugin may have been installed to."""
        prefix = Path(self.global_prefix(runner, **kwargs))
        version = f"python{sys.version_info.major}.{sys.version_info.minor}"
        roots = [
            prefix / "lib" / version / "site-packages",
            prefix / "Lib" / "site-packages",
        ]
        if self.user_site:
            roots.append(Path(self.user_site))
        return roots
