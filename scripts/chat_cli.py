#!/usr/bin/env python3
"""Interactive CLI for trying the agent over the streaming invocation endpoint."""

import json
import sys

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt


class ChatCLI:
    """Interactive prompt that streams agent events to the terminal.

    Each prompt runs as an independent invocation; use the /ws endpoint for a
    conversation that keeps history.
    """

    def __init__(self, base_url: str = "http://localhost:8080"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.console = Console()
        self.client = httpx.Client(timeout=300.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Bedrock WebSocket Agent - Interactive Prompt[/bold blue]\n"
                "Type a prompt to run the agent. Tools: fetch_url, calculate, get_weather.\n"
                "Commands: /help, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print(f"[red]❌ Cannot connect to the service at {self.base_url}.[/red]")
            return

        self.console.print("[green]✅ Connected to agent service[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.strip() == "":
                    continue

                self._run_prompt(user_input)

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/ping")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _run_prompt(self, prompt: str) -> None:
        """Stream one invocation and render its events as they arrive."""
        try:
            with self.client.stream("POST", f"{self.base_url}/invocations", json={"prompt": prompt}) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]❌ API Error: {response.status_code} - {response.text}[/red]")
                    return

                self.console.print("\n[bold green]🤖 Agent[/bold green]")
                for line in response.iter_lines():
                    if line.startswith("data: "):
                        self._display_event(json.loads(line[len("data: ") :]))

        except httpx.HTTPError as e:
            self.console.print(f"[red]❌ Connection error: {e}[/red]")

    def _display_event(self, event: dict) -> None:
        match event.get("type"):
            case "stream":
                self.console.print(event["chunk"], end="", markup=False, highlight=False)
            case "tool_call":
                self.console.print(f"\n[dim]🔧 {event['tool']}({json.dumps(event['input'])})[/dim]")
            case "tool_result":
                color = "dim" if event["status"] == "success" else "red"
                self.console.print(f"[{color}]   ↳ {event['status']}: {event['preview']}[/{color}]", markup=True)
            case "complete":
                self.console.print(
                    f"\n\n[dim]{event.get('stopReason')} · {event.get('steps')} steps · "
                    f"{event.get('duration')}ms · {event.get('totalTokens')} tokens[/dim]"
                )
            case "error":
                self.console.print(f"\n[red]❌ {event['error']}[/red]")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /quit or /exit - Exit

[bold]Example Prompts:[/bold]
1. "What is (17 + 25) * 3?"
2. "What's the weather in Seattle?"
3. "Summarize https://example.com"
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8080"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
