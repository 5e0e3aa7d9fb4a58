"""
Initialize the CLI package. Each module holds the Typer sub-app of one runbook.
"""
