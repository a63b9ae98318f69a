"""Console-script entrypoint; maps escaped exceptions onto stable exit codes."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from nexus_workforce.config.loader import ConfigLoadError
from nexus_workforce.config.schema import ConfigValidationError
from nexus_workforce.errors import WorkforceError

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    TASKS_FAILED = 1
    USAGE_ERROR = 2
    ENGINE_ERROR = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


_EXIT_BY_ERROR: tuple[tuple[type[BaseException], ExitCode], ...] = (
    (ConfigLoadError, ExitCode.USAGE_ERROR),
    (ConfigValidationError, ExitCode.USAGE_ERROR),
    (WorkforceError, ExitCode.ENGINE_ERROR),
    (KeyboardInterrupt, ExitCode.INTERRUPTED),
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    from nexus_workforce.ui.cli import run_cli

    try:
        return _coerce_exit_code(run_cli(argv))
    except SystemExit as exc:
        # argparse exits with 2 on usage errors and 0 on --help.
        return _coerce_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - process boundary
        exit_code = exit_code_for(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(f"error: {str(exc).strip() or type(exc).__name__}", file=sys.stderr)
        return int(exit_code)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Exit code for ``exc``, falling back to its explicit ``__cause__``."""

    current: BaseException | None = exc
    while current is not None:
        for error_type, code in _EXIT_BY_ERROR:
            if isinstance(current, error_type):
                return code
        current = current.__cause__
    return ExitCode.INTERNAL_ERROR


def _coerce_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int):
        return raw_code
    print(str(raw_code), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
