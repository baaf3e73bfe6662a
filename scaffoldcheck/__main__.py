"""Allow ``python -m scaffoldcheck``."""

from scaffoldcheck.matrix import main

main()
