"""
TWAP Market CLI

Command-line entry point: replay quote streams, run the reference exchange
simulation, inspect configuration.
"""
