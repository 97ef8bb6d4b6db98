"""Allow ``python -m cmsync``."""

from cmsync.cli import main

main()
