#!/usr/bin/env python3
"""Interactive staff console for the labdesk service."""

import sys

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

ACTIONS = ("confirm", "cancel", "advance", "complete")

STATUS_STYLES = {
    "Pending": "yellow",
    "Confirmed": "cyan",
    "DeliveringKit": "cyan",
    "KitDelivered": "cyan",
    "SampleReceived": "blue",
    "Testing": "magenta",
    "Completed": "green",
    "Cancelled": "red",
}


class AppointmentsCLI:
    """Interactive console listing and transitioning appointments."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        """Initialize the console."""
        self.base_url = base_url
        self.console = Console()
        self.client = httpx.Client(timeout=60.0)

    def start(self) -> None:
        """Start the interactive session."""
        self.console.print(
            Panel.fit(
                "[bold blue]🧬 labdesk - Appointment Console[/bold blue]\n"
                "Commands: list, show <id>, confirm|cancel|advance|complete <id>, outbox, retry, help, quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to labdesk[/green]\n")

        try:
            while True:
                command = Prompt.ask("\n[bold cyan]labdesk[/bold cyan]").strip()
                if not command:
                    continue

                name, _, argument = command.partition(" ")
                name = name.lower()
                argument = argument.strip()

                if name in ("quit", "exit"):
                    break
                elif name == "help":
                    self._show_help()
                elif name == "list":
                    self._list_appointments()
                elif name == "show" and argument:
                    self._show_appointment(argument)
                elif name in ACTIONS and argument:
                    self._transition(name, argument)
                elif name == "outbox":
                    self._show_outbox()
                elif name == "retry":
                    self._retry_outbox()
                else:
                    self.console.print("[yellow]Unknown command, type 'help'[/yellow]")

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response | None:
        try:
            response = self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")
            return None

        if response.is_error:
            detail = response.json().get("detail", response.text) if response.content else response.text
            self.console.print(f"[red]❌ API Error: {response.status_code} - {detail}[/red]")
            return None
        return response

    def _list_appointments(self) -> None:
        self.console.print("[dim]Loading appointments...[/dim]")
        response = self._request("GET", "/appointments")
        if response is None:
            return

        appointments = response.json()
        table = Table(title=f"Appointments ({len(appointments)})")
        table.add_column("ID", style="dim")
        table.add_column("Date")
        table.add_column("Customer")
        table.add_column("Service")
        table.add_column("Location")
        table.add_column("Status")
        table.add_column("Step", justify="right")

        for appointment in appointments:
            status = appointment["status"]
            customer = appointment["customer_name"]
            if appointment.get("degraded"):
                customer = f"{customer} [red](partial)[/red]"
            table.add_row(
                appointment["id"],
                appointment["scheduled_at"][:16].replace("T", " "),
                customer,
                appointment["service_name"],
                appointment["location_type"],
                f"[{STATUS_STYLES.get(status, 'white')}]{status}[/]",
                str(appointment["current_step_index"]),
            )

        self.console.print(table)

    def _show_appointment(self, appointment_id: str) -> None:
        response = self._request("GET", f"/appointments/{appointment_id}")
        if response is None:
            return

        appointment = response.json()
        doctor = appointment.get("doctor_info") or {}
        order = appointment.get("order_snapshot") or {}
        participants = ", ".join(p["participant_name"] for p in appointment.get("participants", [])) or "-"

        self.console.print(
            Panel(
                f"[bold]{appointment['customer_name']}[/bold] ({appointment['email']}, {appointment['phone']})\n"
                f"Service: {appointment['service_name']} [{appointment['legal_flag']}]\n"
                f"Location: {appointment['location_type']}\n"
                f"Doctor: {doctor.get('name', '-')} {doctor.get('day_of_week', '')} {doctor.get('time_slot', '')}\n"
                f"Participants: {participants}\n"
                f"Order: {order.get('order_code') or '-'} "
                f"({order.get('status', '-')}, total {order.get('total_amount', '-')})\n"
                f"Status: {appointment['status']} "
                f"(step {appointment['current_step_index']}: {' → '.join(appointment['completed_steps'])})",
                title=f"[cyan]Appointment {appointment['id']}[/cyan]",
                border_style="cyan",
            )
        )

    def _transition(self, action: str, appointment_id: str) -> None:
        body = {}
        if action == "cancel":
            reason = Prompt.ask("Reason", default="")
            if reason:
                body["reason"] = reason

        response = self._request("POST", f"/appointments/{appointment_id}/{action}", json=body)
        if response is None:
            return

        data = response.json()
        self.console.print(
            f"[green]✅ {appointment_id}: {data['previous_status']} → {data['new_status']}[/green]"
        )
        self._show_report(data["effects"])

    def _show_outbox(self) -> None:
        response = self._request("GET", "/outbox")
        if response is None:
            return

        pending = response.json()
        if not pending:
            self.console.print("[green]Outbox is empty[/green]")
            return

        table = Table(title=f"Pending effects ({len(pending)})")
        table.add_column("Effect")
        table.add_column("Kind")
        table.add_column("Appointment")
        table.add_column("Attempts", justify="right")
        table.add_column("Last error", style="red")
        for effect in pending:
            table.add_row(
                effect["effect_id"],
                effect["kind"],
                effect["appointment_id"],
                str(effect["attempts"]),
                effect.get("last_error") or "",
            )
        self.console.print(table)

    def _retry_outbox(self) -> None:
        response = self._request("POST", "/outbox/retry")
        if response is not None:
            self._show_report(response.json())

    def _show_report(self, report: dict) -> None:
        sync = report.get("sync_result")
        if sync and sync.get("error"):
            self.console.print(f"[red]Order sync: {sync['error']}[/red]")
        for anomaly in (sync or {}).get("anomalies", []):
            self.console.print(f"[yellow]⚠ {anomaly}[/yellow]")
        self.console.print(
            f"[dim]Effects delivered: {len(report['delivered'])}, queued for retry: {len(report['failed'])}[/dim]"
        )

    def _show_help(self) -> None:
        help_text = """
[bold]Available Commands:[/bold]
• list - Show all appointments
• show <id> - Show one appointment in detail
• confirm <id> / cancel <id> / advance <id> / complete <id> - Change status
• outbox - Show effects waiting for a retry
• retry - Retry pending effects
• quit - Exit
        """
        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the appointment console."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    cli = AppointmentsCLI(base_url)
    cli.start()


if __name__ == "__main__":
    main()
