"""Per-slot virtualenvs for Python projects.

A slot shares git history with its project but not its installed packages:
an editable install in the project's environment keeps importing the
project's sources, not the slot's. Each installable Python directory in a slot
therefore gets its own ``.venv`` with the slot installed in editable mode, and
``slot start`` puts that venv first on the agent's PATH.
"""

import logging
import os
import subprocess
import sys
import tomllib
from configparser import ConfigParser, Error as ConfigParserError
from pathlib import Path
from typing import Dict, Optional

from ..utils.subprocess_utils import SubprocessError, run_command

logger = logging.getLogger(__name__)


class VenvManager:
    """Creates and locates slot virtualenvs."""

    VENV_DIR = ".venv"

    def __init__(self, install_timeout: int = 900):
        self.install_timeout = install_timeout

    def setup_venv(self, project_dir: Path) -> Optional[Dict[str, str]]:
        """Create ``project_dir/.venv`` and install the directory into it.

        Returns the env vars that activate the venv, or None when the
        directory is not an installable Python project or the venv could not
        be created. Reuses a venv that already has an interpreter.
        """
        project_dir = Path(project_dir)
        if not self.is_python_project(project_dir):
            return None

        venv_path = project_dir / self.VENV_DIR
        if self._venv_is_valid(venv_path):
            logger.debug(f"Reusing existing venv: {venv_path}")
            return self.build_env_vars(venv_path)

        if not self._create_venv(venv_path):
            return None

        # The venv is still useful when the install fails
        self._install_project(project_dir, venv_path)
        return self.build_env_vars(venv_path)

    def env_for(self, slot_path: Path) -> Optional[Dict[str, str]]:
        """Activation env for an existing slot venv, if there is one."""
        venv_path = Path(slot_path) / self.VENV_DIR
        if self._venv_is_valid(venv_path):
            return self.build_env_vars(venv_path)
        return None

    def is_python_project(self, path: Path) -> bool:
        """Installable projects only; a bare requirements.txt does not count."""
        if (path / "setup.py").exists():
            return True

        setup_cfg = path / "setup.cfg"
        if setup_cfg.exists() and self._setup_cfg_has_metadata(setup_cfg):
            return True

        pyproject = path / "pyproject.toml"
        return pyproject.exists() and self._pyproject_has_build_system(pyproject)

    def _setup_cfg_has_metadata(self, setup_cfg: Path) -> bool:
        config = ConfigParser()
        try:
            config.read(str(setup_cfg))
        except ConfigParserError as e:
            logger.debug(f"Unparseable {setup_cfg}: {e}")
            return False
        return config.has_section("metadata")

    def _pyproject_has_build_system(self, pyproject: Path) -> bool:
        try:
            with open(pyproject, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.debug(f"Unparseable {pyproject}: {e}")
            return False
        return "build-system" in data

    def _venv_is_valid(self, venv_path: Path) -> bool:
        return (venv_path / "bin" / "python").exists()

    def _create_venv(self, venv_path: Path) -> bool:
        logger.info(f"Creating virtualenv: {venv_path}")
        try:
            run_command([sys.executable, "-m", "venv", str(venv_path)], check=True, timeout=120)
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Failed to create venv {venv_path}: {e}")
            return False
        return True

    def _install_project(self, project_dir: Path, venv_path: Path) -> bool:
        pip = str(venv_path / "bin" / "pip")
        cmd = [pip, "install", "-e", "."]
        if (project_dir / "requirements.txt").exists():
            cmd.extend(["-r", "requirements.txt"])

        logger.info(f"Installing {project_dir.name} into its venv")
        try:
            run_command(cmd, cwd=project_dir, check=True, timeout=self.install_timeout)
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            logger.warning(f"pip install -e . failed in {project_dir} (venv still usable): {e}")
            return False
        return True

    def build_env_vars(self, venv_path: Path) -> Dict[str, str]:
        """PATH and VIRTUAL_ENV that activate ``venv_path`` for child processes."""
        venv_bin = str(venv_path / "bin")
        original_path = os.environ.get("PATH", "")
        return {
            "VIRTUAL_ENV": str(venv_path),
            "PATH": f"{venv_bin}:{original_path}",
        }
