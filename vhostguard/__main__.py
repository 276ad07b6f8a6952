"""
Punto de entrada: python -m vhostguard
"""

from vhostguard.cli.app import main

if __name__ == "__main__":
    main()
