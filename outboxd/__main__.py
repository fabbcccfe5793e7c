import sys

from outboxd.cli import main

sys.exit(main())
