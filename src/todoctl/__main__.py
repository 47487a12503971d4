from todoctl.cli import cli

cli()
