"""
Command-line interface: the Typer app, Rich formatters and the session activity view.
"""
