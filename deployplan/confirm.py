import sys
import typing
from typing import Any

from ape.utils import ZERO_ADDRESS


def _abort() -> None:
    print("Aborting deployment!")
    sys.exit(-1)


def _ask(question: str) -> None:
    answer = input(f"{question} Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _confirm_deployment(description: str) -> None:
    """Asks the user to confirm a single deployment, e.g. 'ERC20Token as Token'."""
    _ask(f"Deploy {description}")


def _continue() -> None:
    _ask("Continue")


def _confirm_resolution(
    resolved_params: typing.Sequence[Any],
    description: str,
    parameters: str = "Constructor parameters",
) -> None:
    """Shows the resolved arguments of a deployment, then asks for confirmation."""
    if len(resolved_params) == 0:
        print(f"\n(i) No {parameters.lower()} for {description}")
        _confirm_deployment(description)
        return

    print(f"\n{parameters} for {description}")
    for position, resolved_value in enumerate(resolved_params):
        print(f"\t[{position}]={resolved_value}")
    _confirm_deployment(description)
    if ZERO_ADDRESS in resolved_params:
        _ask(f"Zero address passed to {description}; continue anyway?")
