"""Interactive prompts used only while acquiring a new session."""

from typing import Sequence

import typer


class Prompter:
    """Line input and single-choice prompts on the controlling terminal."""

    def input(self, message: str, hidden: bool = False) -> str:
        return typer.prompt(message, hide_input=hidden).strip()

    def choose(self, message: str, options: Sequence[str]) -> str:
        """Ask the user to pick one of ``options`` by number; returns the option."""
        typer.echo(message)
        for index, option in enumerate(options, start=1):
            typer.echo(f"  {index}) {option}")

        while True:
            answer = typer.prompt("Enter a number", type=int)
            if 1 <= answer <= len(options):
                return options[answer - 1]
            typer.echo(f"Please enter a number between 1 and {len(options)}.")
