import sys

from confirmwatch.cli import main

sys.exit(main())
