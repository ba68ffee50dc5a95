import sys

from release_build.cli import main

raise SystemExit(main(sys.argv[1:]))
