from __future__ import annotations

import logging
import os
import re
import sys
from os.path import join as pjoin
from pathlib import Path

from setuptools import Command, find_packages, setup

ROOT = Path(__file__).resolve().parent
VERSION_FILE = ROOT / "src" / "dxbench" / "_version.py"
MIN_PYTHON = (3, 11)


def _warn_if_below_min_python() -> None:
    if sys.version_info < MIN_PYTHON:
        logging.warning(
            "dxbench targets Python %d.%d+ (running %d.%d); tomllib is required.",
            MIN_PYTHON[0],
            MIN_PYTHON[1],
            sys.version_info.major,
            sys.version_info.minor,
        )


def _project_version() -> str:
    match = re.search(r'^VERSION = "([^"]+)"', VERSION_FILE.read_text(encoding="utf-8"), re.MULTILINE)
    if match is None:
        raise RuntimeError(f"could not find VERSION in {VERSION_FILE}")
    return match.group(1)


_warn_if_below_min_python()


class PrintVersion(Command):
    user_options = []

    def initialize_options(self):
        self.version = None

    def finalize_options(self):
        self.version = _project_version()

    def run(self):
        print(self.version)


class CleanCommand(Command):
    """
    Remove all build files and all compiled files
    =============================================

    Remove everything from build, including that
    directory, and all .pyc files
    """

    user_options = [("verbose", "v", "produce verbose output")]

    def initialize_options(self):
        self._files_to_delete = []
        self._dirs_to_delete = []

        for root, dirs, files in os.walk("."):
            for f in files:
                if f.endswith(".pyc"):
                    self._files_to_delete.append(pjoin(root, f))
        for target in ("build", "dist", pjoin("src", "dxbench.egg-info")):
            for root, dirs, files in os.walk(target):
                for f in files:
                    self._files_to_delete.append(pjoin(root, f))
                for d in dirs:
                    self._dirs_to_delete.append(pjoin(root, d))
            self._dirs_to_delete.append(target)
        # children before parents
        self._dirs_to_delete = list(reversed(self._dirs_to_delete))

        self.verbose = 0

    def finalize_options(self):
        pass

    def run(self):
        for clean_me in self._files_to_delete:
            if self.dry_run:
                logging.info("Would have unlinked %s", clean_me)
            else:
                try:
                    self.announce("Deleting " + clean_me, level=2)
                    os.unlink(clean_me)
                except OSError:
                    logging.warning("Failed to delete file %s", clean_me)
        for clean_me in self._dirs_to_delete:
            if self.dry_run:
                logging.info("Would have rmdir'ed %s", clean_me)
            elif os.path.exists(clean_me):
                try:
                    self.announce("Going to remove " + clean_me, level=2)
                    os.rmdir(clean_me)
                except OSError:
                    logging.warning("Failed to delete dir %s", clean_me)


setup(
    name="dxbench",
    version=_project_version(),
    description="Differential benchmark and load generator for bitmap-index databases",
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"dxbench.config": ["defaults.toml"]},
    include_package_data=True,
    install_requires=[
        "requests>=2.31",
        "urllib3>=2.0",
    ],
    extras_require={
        "fast": ["orjson>=3.9"],
        "report": ["polars>=1.0"],
        "test": ["pytest>=8.0", "polars>=1.0"],
    },
    entry_points={"console_scripts": ["dxbench=dxbench.cli:main"]},
    cmdclass={
        "clean": CleanCommand,
        "version": PrintVersion,
    },
)
