#!/usr/bin/env python3
"""
Zone Topology - Main Entry Point

This is the main entry point for zone topology analysis.
It can be run directly or imported as a module.
"""

from zone_topology.cli.main import main

if __name__ == "__main__":
    main()
