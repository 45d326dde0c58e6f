from aimemory.cli import cli

cli()
