"""Allow ``python -m askrelay``."""
from askrelay.engine.cli import main

main()
