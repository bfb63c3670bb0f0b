# Copyright (c) 2025 Trae AI. All rights reserved.

import typer
from cloudshelf.cli.main import app as cli_app
from cloudshelf.server.app import Server

app = typer.Typer(help="CloudShelf - Index and enrich media libraries on remote storage.")

# Add CLI commands
app.registered_commands.extend(cli_app.registered_commands)
app.registered_groups.extend(cli_app.registered_groups)

@app.command("server")
def run_server(config_path: str = "config.yaml"):
    """
    Run the JSON API with the periodic scan timer.
    """
    server = Server(config_path)
    server.run()

if __name__ == "__main__":
    app()
