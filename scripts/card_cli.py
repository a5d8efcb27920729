#!/usr/bin/env python3
"""Interactive terminal client for issuing and looking up loyalty cards."""

import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from nector_cards.clients.patient_api import PatientApiClient, PatientApiError
from nector_cards.config import MAX_ADDRESS_LENGTH, get_settings
from nector_cards.exceptions import PatientValidationError
from nector_cards.models.session import LookupSession
from nector_cards.services.issuance import CardIssuer
from nector_cards.services.lookup import CardLookup
from nector_cards.utils.address import ADDRESS_PLACEHOLDER


class CardCLI:
    """Terminal front desk for the loyalty card service."""

    def __init__(self, base_url: str = "http://localhost:3000", output_dir: Path = Path(".")):
        """Initialize card CLI."""
        settings = get_settings()
        self.console = Console()
        self.output_dir = output_dir
        self.api = PatientApiClient(base_url)
        self.issuer = CardIssuer(self.api, template=settings.card_template)
        self.lookup = CardLookup(self.api, template=settings.card_template)
        self.session = LookupSession()

    async def start(self) -> None:
        """Start the interactive session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🏥 Nector Hospital - Loyalty Cards[/bold blue]\n"
                "Issue new cards, look up patients and edit their details.\n"
                "Commands: issue, search, card, edit, help, quit",
                border_style="blue",
            )
        )

        if not await self._test_connection():
            self.console.print("[red]❌ Cannot connect to the card service. Make sure it's running.[/red]")
            await self.api.aclose()
            return

        self.console.print("[green]✅ Connected to card service[/green]")

        try:
            while True:
                command = Prompt.ask("\n[bold cyan]Command[/bold cyan]").strip().lower()

                if command in ["quit", "exit", "/quit", "/exit"]:
                    break
                elif command in ["help", "/help"]:
                    self._show_help()
                elif command == "issue":
                    await self._issue()
                elif command == "search":
                    await self._search()
                elif command == "card":
                    await self._render_lookup_card()
                elif command == "edit":
                    await self._edit()
                elif command:
                    self.console.print(f"[yellow]Unknown command: {command}[/yellow]")

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            await self.api.aclose()

    async def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            await self.api.health()
            return True
        except PatientApiError:
            return False

    async def _issue(self) -> None:
        """Collect form input, render the card locally, then save it."""
        form = {
            "patientId": Prompt.ask("Patient ID").strip(),
            "patientName": Prompt.ask("Patient name").strip(),
            "phoneNumber": Prompt.ask("Phone number (10 digits)").strip(),
            "address": Prompt.ask(f"Address (max {MAX_ADDRESS_LENGTH} characters)", default="").strip(),
            "discount": IntPrompt.ask("Discount %"),
        }

        try:
            result = await self.issuer.issue(form)
        except PatientValidationError as e:
            self.console.print(f"[red]⚠️ {e}[/red]")
            return

        path = result.card.save(self.output_dir)
        self.console.print(f"[green]Patient Card ready! Saved to {path}[/green]")

        style = "green" if result.saved else "red"
        self.console.print(f"[{style}]{result.message}[/{style}]")

    async def _search(self) -> None:
        """Look up a patient by ID and hold the result in the session."""
        patient_id = Prompt.ask("Patient ID")

        try:
            self.session = await self.lookup.search(patient_id, self.session)
        except PatientValidationError as e:
            self.console.print(f"[red]⚠️ {e}[/red]")
            return
        except PatientApiError as e:
            self.console.print(f"[red]❌ Error: {e}[/red]")
            return

        if not self.session.has_patient:
            self.console.print("[red]Patient not found. Please check the Patient ID.[/red]")
            return

        self.console.print("[green]✅ Patient found successfully![/green]")
        self._show_patient()

    async def _render_lookup_card(self) -> None:
        """Render the current patient's card and save it."""
        try:
            card = await self.lookup.render(self.session)
        except LookupError as e:
            self.console.print(f"[yellow]⚠️ {e}[/yellow]")
            return

        path = card.save(self.output_dir)
        self.console.print(f"[green]Card saved to {path}[/green]")

    async def _edit(self) -> None:
        """Edit the current patient, prefilled with the stored values."""
        if not self.session.has_patient:
            self.console.print("[yellow]⚠️ Search for a patient first.[/yellow]")
            return

        patient = self.session.require_patient()
        form = {
            "patientName": Prompt.ask("Patient name", default=patient.patient_name).strip(),
            "phoneNumber": Prompt.ask("Phone number", default=patient.phone_number).strip(),
            "address": Prompt.ask("Address", default=patient.address or "").strip(),
            "discount": IntPrompt.ask("Discount %", default=patient.discount),
            "validTill": Prompt.ask("Valid till (YYYY-MM-DD)", default=patient.valid_till).strip(),
        }

        try:
            self.session = await self.lookup.edit(self.session, form)
        except PatientValidationError as e:
            self.console.print(f"[red]⚠️ {e}[/red]")
            return
        except PatientApiError as e:
            self.console.print(f"[red]❌ Error updating patient: {e}[/red]")
            return

        self.console.print("[green]✅ Patient updated successfully![/green]")
        self._show_patient()

    def _show_patient(self) -> None:
        """Show the session's patient details."""
        patient = self.session.require_patient()

        table = Table(show_header=False, box=None)
        table.add_row("Card No", patient.card_no)
        table.add_row("Patient ID", patient.patient_id)
        table.add_row("Name", patient.patient_name)
        table.add_row("Phone", patient.phone_number)
        table.add_row("Address", patient.address or ADDRESS_PLACEHOLDER)
        table.add_row("Discount", f"{patient.discount}%")
        table.add_row("Valid Till", patient.valid_till)

        self.console.print(Panel(table, title="[bold green]Patient Details[/bold green]", border_style="green"))

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• issue - Fill the form, render a new card and save the patient
• search - Find a patient by ID
• card - Render the found patient's card
• edit - Change the found patient's details
• quit - Exit

[bold]Rules:[/bold]
• Phone numbers are exactly 10 digits
• Discount is between 1 and 100
• Issuing a card for an existing Patient ID updates that patient
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the card CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:3000"

    cli = CardCLI(base_url)
    asyncio.run(cli.start())


if __name__ == "__main__":
    main()
